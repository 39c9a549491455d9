"""Who may decide which approval stage."""
from __future__ import annotations
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from erp_backend.app.models.approval import ApprovalRequest
from erp_backend.app.models.profile import Profile
from erp_backend.app.utils.stages import AuthorizationRule, get_workflow


def _in_department(actor: Profile, department: str) -> bool:
    return actor.department == department or department in (actor.lead_departments or [])

def rule_matches(rule: AuthorizationRule, actor: Profile, request: ApprovalRequest) -> bool:
    role = (actor.role or "").lower()
    if rule.roles and role not in rule.roles:
        return False
    if rule.department and not _in_department(actor, rule.department):
        return False
    if rule.request_department:
        if not request.department or request.department not in actor.led_departments():
            return False
    if rule.assignee_field:
        assigned = (request.context or {}).get(rule.assignee_field)
        if not assigned or str(assigned) != str(actor.id):
            return False
    return True

def matches_stage_rules(actor: Profile, request: ApprovalRequest, stage: str) -> bool:
    """Stage rules only, without the admin override."""
    definition = get_workflow(request.workflow_type).stage(stage)
    return any(rule_matches(r, actor, request) for r in definition.rules)

def has_override(actor: Optional[Profile], workflow_type: str) -> bool:
    if actor is None:
        return False
    return (actor.role or "").lower() in get_workflow(workflow_type).override_roles

def can_decide(actor: Optional[Profile], request: ApprovalRequest, stage: str) -> bool:
    """
    True when ``actor`` may approve or reject ``stage`` of ``request``.

    Inactive or missing actors never can. Unknown stages raise
    UnknownStageError (configuration bug), an unauthorized actor just gets
    False.
    """
    if actor is None or actor.is_active is False:
        return False
    if has_override(actor, request.workflow_type):
        get_workflow(request.workflow_type).stage(stage)
        return True
    return matches_stage_rules(actor, request, stage)

def find_approvers(db: Session, request: ApprovalRequest, stage: str,
                   candidates: Optional[Iterable[Profile]] = None) -> List[Profile]:
    """
    Profiles that can decide ``stage``. Rule matches win; holders of an
    override role are returned only when nobody matches the stage rules.
    """
    if candidates is None:
        candidates = (
            db.query(Profile)
            .filter(Profile.is_active == True)  # noqa: E712
            .order_by(Profile.created_at.asc(), Profile.id.asc())
            .all()
        )
    candidates = list(candidates)
    direct = [p for p in candidates if matches_stage_rules(p, request, stage)]
    if direct:
        return direct
    return [p for p in candidates if has_override(p, request.workflow_type)]
