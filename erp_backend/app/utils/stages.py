# app/utils/stages.py
"""
Stage definitions and sequencing for the approval workflows.

Definitions are built-in defaults, optionally overridden per workflow by a
YAML file (WORKFLOW_POLICY_PATH). They are loaded once and treated as
immutable for the life of the process; ``reload_workflows()`` swaps in a new
snapshot atomically.

YAML shape (every key optional, ``stages`` replaces the whole list):

    workflows:
      procurement:
        override_roles: [super_admin]
        comments_required: [rejected]
        stages:
          - id: department_lead
            rules:
              - {roles: [lead], request_department: true}
"""
from __future__ import annotations
import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Dict, FrozenSet, List, Optional, Tuple

import yaml

from erp_backend.app.core.errors import UnknownStageError

_DEFAULT_POLICY = Path(__file__).resolve().parents[2] / "policies" / "workflows.yaml"
POLICY_PATH = Path(os.getenv("WORKFLOW_POLICY_PATH", str(_DEFAULT_POLICY)))

PROCUREMENT = "procurement"
LEAVE = "leave"

ACTIVE_STATUS = "pending_approval"
REJECTED_STATUS = "rejected"


@dataclass(frozen=True)
class AuthorizationRule:
    """
    One way to be entitled to decide a stage. All given conditions must hold.

    roles              - actor role must be in this set (empty = any role)
    department         - fixed department, matched by the actor's own
                         department or lead-department list
    request_department - the request's department must be one the actor leads
    assignee_field     - actor id must equal request.context[assignee_field]
    """
    roles: FrozenSet[str] = frozenset()
    department: Optional[str] = None
    request_department: bool = False
    assignee_field: Optional[str] = None


@dataclass(frozen=True)
class StageDefinition:
    id: str
    label: str
    rules: Tuple[AuthorizationRule, ...]


@dataclass(frozen=True)
class WorkflowDefinition:
    type: str
    subject_type: str
    stages: Tuple[StageDefinition, ...]
    approved_status: str
    active_status: str = ACTIVE_STATUS
    rejected_status: str = REJECTED_STATUS
    override_roles: FrozenSet[str] = frozenset()
    comments_required: FrozenSet[str] = frozenset({"rejected"})
    terminal_gate: Optional[str] = None
    link_url: str = "/"
    _index: Dict[str, int] = field(default_factory=dict, compare=False, repr=False)

    @property
    def stage_ids(self) -> List[str]:
        return [s.id for s in self.stages]

    @property
    def terminal_statuses(self) -> FrozenSet[str]:
        return frozenset({self.approved_status, self.rejected_status})

    def stage(self, stage_id: str) -> StageDefinition:
        idx = self._index.get(stage_id)
        if idx is None:
            raise UnknownStageError(self.type, stage_id)
        return self.stages[idx]


DEFAULT_WORKFLOWS: Dict[str, dict] = {
    PROCUREMENT: {
        "subject_type": "help_desk_ticket",
        "approved_status": "approved_for_procurement",
        "override_roles": ["super_admin"],
        "comments_required": ["rejected"],
        "link_url": "/admin/help-desk",
        "stages": [
            {
                "id": "department_lead",
                "label": "Department Lead",
                "rules": [{"roles": ["lead"], "request_department": True}],
            },
            {
                "id": "head_corporate_services",
                "label": "Head, Corporate Services",
                "rules": [{"roles": ["admin", "super_admin", "lead"], "department": "Admin & HR"}],
            },
            {
                "id": "managing_director",
                "label": "Managing Director",
                "rules": [
                    {"roles": ["super_admin"]},
                    {"roles": ["admin"], "department": "Executive Management"},
                ],
            },
        ],
    },
    LEAVE: {
        "subject_type": "leave_request",
        "approved_status": "approved",
        "override_roles": ["super_admin"],
        "comments_required": ["rejected"],
        "terminal_gate": "evidence",
        "link_url": "/dashboard/leave",
        "stages": [
            {"id": "reliever", "label": "Reliever", "rules": [{"assignee_field": "reliever_id"}]},
            {"id": "supervisor", "label": "Supervisor", "rules": [{"assignee_field": "supervisor_id"}]},
            {"id": "hr", "label": "HR", "rules": [{"roles": ["admin", "super_admin"]}]},
        ],
    },
}

_lock = RLock()
_WORKFLOWS: Optional[Dict[str, WorkflowDefinition]] = None


# -------------------------- loading --------------------------

def _load_overrides_from_file() -> dict:
    if POLICY_PATH.exists():
        with open(POLICY_PATH, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                return {}
            wf = data.get("workflows") or {}
            return wf if isinstance(wf, dict) else {}
    return {}

def _build_rule(raw: dict) -> AuthorizationRule:
    return AuthorizationRule(
        roles=frozenset(str(r).lower() for r in (raw.get("roles") or [])),
        department=raw.get("department") or None,
        request_department=bool(raw.get("request_department", False)),
        assignee_field=raw.get("assignee_field") or None,
    )

def _build_workflow(wf_type: str, raw: dict) -> WorkflowDefinition:
    stages: List[StageDefinition] = []
    for s in raw.get("stages") or []:
        rules = tuple(_build_rule(r) for r in (s.get("rules") or []))
        if not rules:
            raise ValueError(f"stage '{s.get('id')}' of workflow '{wf_type}' declares no rules")
        stages.append(StageDefinition(id=str(s["id"]), label=str(s.get("label") or s["id"]), rules=rules))

    if not stages:
        raise ValueError(f"workflow '{wf_type}' declares no stages")
    ids = [s.id for s in stages]
    if len(set(ids)) != len(ids):
        raise ValueError(f"workflow '{wf_type}' declares duplicate stages: {ids}")

    return WorkflowDefinition(
        type=wf_type,
        subject_type=raw["subject_type"],
        stages=tuple(stages),
        approved_status=raw["approved_status"],
        active_status=raw.get("active_status", ACTIVE_STATUS),
        rejected_status=raw.get("rejected_status", REJECTED_STATUS),
        override_roles=frozenset(raw.get("override_roles") or []),
        comments_required=frozenset(raw.get("comments_required") or []),
        terminal_gate=raw.get("terminal_gate"),
        link_url=raw.get("link_url", "/"),
        _index={sid: i for i, sid in enumerate(ids)},
    )

def _load() -> Dict[str, WorkflowDefinition]:
    merged = copy.deepcopy(DEFAULT_WORKFLOWS)
    for wf_type, override in _load_overrides_from_file().items():
        if isinstance(override, dict):
            merged.setdefault(wf_type, {}).update(override)
    return {wf_type: _build_workflow(wf_type, raw) for wf_type, raw in merged.items()}

def get_workflows() -> Dict[str, WorkflowDefinition]:
    global _WORKFLOWS
    with _lock:
        if _WORKFLOWS is None:
            _WORKFLOWS = _load()
        return _WORKFLOWS

def reload_workflows() -> Dict[str, WorkflowDefinition]:
    global _WORKFLOWS
    fresh = _load()
    with _lock:
        _WORKFLOWS = fresh
    return fresh


# -------------------------- sequencing --------------------------

def get_workflow(workflow_type: str) -> WorkflowDefinition:
    wf = get_workflows().get(workflow_type)
    if wf is None:
        raise UnknownStageError(workflow_type)
    return wf

def stage_order(workflow_type: str) -> List[str]:
    return get_workflow(workflow_type).stage_ids

def first_stage(workflow_type: str) -> str:
    return get_workflow(workflow_type).stages[0].id

def is_valid_stage(workflow_type: str, stage: str) -> bool:
    wf = get_workflows().get(workflow_type)
    return wf is not None and stage in wf._index

def next_stage(workflow_type: str, current_stage: str) -> Optional[str]:
    """Stage after ``current_stage``, or None when it is the last one."""
    wf = get_workflow(workflow_type)
    idx = wf._index.get(current_stage)
    if idx is None:
        raise UnknownStageError(workflow_type, current_stage)
    if idx == len(wf.stages) - 1:
        return None
    return wf.stages[idx + 1].id
