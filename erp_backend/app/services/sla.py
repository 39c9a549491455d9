# erp_backend/app/services/sla.py
"""
Per-stage SLA for pending approvals. Read-only derivations over the record
store plus reminder/escalation fan-out; never changes approval state.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from erp_backend.app.core.errors import Forbidden, ValidationError
from erp_backend.app.models.approval import ApprovalRecord, ApprovalRequest, RecordStatus
from erp_backend.app.models.profile import Profile, Role
from erp_backend.app.models.sla import ApprovalSlaPolicy
from erp_backend.app.services.notify import Message, notify_profiles
from erp_backend.app.services.resolver import can_decide, find_approvers
from erp_backend.app.utils.stages import get_workflow, is_valid_stage

logger = logging.getLogger(__name__)

DEFAULT_DUE_HOURS = 24
DEFAULT_REMINDER_HOURS = 4

ON_TRACK = "on_track"
DUE_SOON = "due_soon"
OVERDUE = "overdue"


@dataclass
class SlaStatus:
    due_at: datetime
    due_status: str
    hours_remaining: int

    def to_dict(self) -> dict:
        return {"due_at": self.due_at.isoformat(), "due_status": self.due_status,
                "hours_remaining": self.hours_remaining}


def sla_status(requested_at: datetime, policy: Optional[ApprovalSlaPolicy] = None,
               now: Optional[datetime] = None) -> SlaStatus:
    now = now or datetime.utcnow()
    due_hours = policy.due_hours if policy is not None else DEFAULT_DUE_HOURS
    reminder = policy.reminder_hours_before if policy is not None else DEFAULT_REMINDER_HOURS
    due_at = requested_at + timedelta(hours=due_hours)
    remaining = due_at - now
    if remaining <= timedelta(0):
        status = OVERDUE
    elif remaining <= timedelta(hours=reminder):
        status = DUE_SOON
    else:
        status = ON_TRACK
    # floor toward zero like the dashboards expect (-0.5h -> 0, 3.9h -> 3)
    hours = remaining.total_seconds() / 3600.0
    return SlaStatus(due_at=due_at, due_status=status,
                     hours_remaining=int(math.floor(hours)) if hours >= 0 else int(math.ceil(hours)))


# -------------------------- policies --------------------------

def list_sla_policies(db: Session, workflow_type: Optional[str] = None) -> List[ApprovalSlaPolicy]:
    q = db.query(ApprovalSlaPolicy)
    if workflow_type:
        q = q.filter(ApprovalSlaPolicy.workflow_type == workflow_type)
    return q.order_by(ApprovalSlaPolicy.workflow_type.asc(), ApprovalSlaPolicy.stage.asc()).all()

def policy_map(db: Session) -> Dict[Tuple[str, str], ApprovalSlaPolicy]:
    rows = db.query(ApprovalSlaPolicy).filter(ApprovalSlaPolicy.is_active == True).all()  # noqa: E712
    return {(p.workflow_type, p.stage): p for p in rows}

def upsert_sla_policy(
    db: Session,
    actor: Profile,
    workflow_type: str,
    stage: str,
    due_hours: int = DEFAULT_DUE_HOURS,
    reminder_hours_before: int = DEFAULT_REMINDER_HOURS,
    escalate_to_role: Optional[str] = None,
    is_active: bool = True,
) -> ApprovalSlaPolicy:
    if (actor.role or "") not in (Role.ADMIN.value, Role.SUPER_ADMIN.value):
        raise Forbidden("Forbidden")
    if not is_valid_stage(workflow_type, stage):
        raise ValidationError(f"Unknown stage '{stage}' for workflow '{workflow_type}'")
    if due_hours <= 0:
        raise ValidationError("due_hours must be > 0")
    if reminder_hours_before < 0 or reminder_hours_before > due_hours:
        raise ValidationError("reminder_hours_before must be between 0 and due_hours")
    if escalate_to_role and escalate_to_role not in {r.value for r in Role}:
        raise ValidationError(f"Unknown role '{escalate_to_role}'")

    p = (
        db.query(ApprovalSlaPolicy)
        .filter(ApprovalSlaPolicy.workflow_type == workflow_type, ApprovalSlaPolicy.stage == stage)
        .first()
    )
    if p is None:
        p = ApprovalSlaPolicy(workflow_type=workflow_type, stage=stage)
        db.add(p)
    p.due_hours = int(due_hours)
    p.reminder_hours_before = int(reminder_hours_before)
    p.escalate_to_role = escalate_to_role or None
    p.is_active = bool(is_active)
    db.commit()
    db.refresh(p)
    return p


# -------------------------- queue --------------------------

def _pending(db: Session, workflow_type: Optional[str] = None) -> List[Tuple[ApprovalRequest, ApprovalRecord]]:
    q = (
        db.query(ApprovalRequest, ApprovalRecord)
        .join(ApprovalRecord, ApprovalRecord.request_id == ApprovalRequest.id)
        .filter(ApprovalRecord.status == RecordStatus.PENDING.value)
    )
    if workflow_type:
        q = q.filter(ApprovalRequest.workflow_type == workflow_type)
    return q.order_by(ApprovalRecord.requested_at.asc(), ApprovalRecord.id.asc()).all()

def approval_queue(db: Session, actor: Profile, workflow_type: Optional[str] = None,
                   now: Optional[datetime] = None) -> List[dict]:
    """Pending stages ``actor`` may decide, oldest first, with SLA annotation."""
    now = now or datetime.utcnow()
    policies = policy_map(db)
    out = []
    for req, rec in _pending(db, workflow_type):
        if not can_decide(actor, req, rec.stage):
            continue
        wf = get_workflow(req.workflow_type)
        sla = sla_status(rec.requested_at, policies.get((req.workflow_type, rec.stage)), now)
        out.append({
            "request_id": req.id,
            "workflow_type": req.workflow_type,
            "subject_type": req.subject_type,
            "subject_id": req.subject_id,
            "title": req.title,
            "priority": req.priority,
            "department": req.department,
            "requester_id": req.requester_id,
            "stage": rec.stage,
            "stage_label": wf.stage(rec.stage).label,
            "requested_at": rec.requested_at.isoformat(),
            **sla.to_dict(),
        })
    return out


# -------------------------- reminders --------------------------

def send_reminders(db: Session, actor: Profile, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Remind current approvers of due-soon stages and escalate overdue ones to
    the policy's ``escalate_to_role``. Stages without a policy are skipped.
    """
    if (actor.role or "") not in (Role.ADMIN.value, Role.SUPER_ADMIN.value):
        raise Forbidden("Forbidden")
    now = now or datetime.utcnow()
    policies = policy_map(db)
    reminders = escalations = 0

    for req, rec in _pending(db):
        policy = policies.get((req.workflow_type, rec.stage))
        if policy is None:
            continue
        sla = sla_status(rec.requested_at, policy, now)
        wf = get_workflow(req.workflow_type)
        label = wf.stage(rec.stage).label
        name = req.title or f"Request #{req.id}"

        if sla.due_status == DUE_SOON:
            rows = notify_profiles(
                db,
                find_approvers(db, req, rec.stage),
                Message(type="system", title="Approval SLA reminder",
                        message=f"{name} is due soon at {label}. Please review before SLA breach.",
                        priority="high"),
                link_url=wf.link_url,
                entity_type=req.subject_type,
                entity_id=req.subject_id,
                rich_content={"approval_request_id": req.id, "stage": rec.stage, **sla.to_dict()},
            )
            reminders += len(rows)
        elif sla.due_status == OVERDUE and policy.escalate_to_role:
            targets = (
                db.query(Profile)
                .filter(Profile.role == policy.escalate_to_role, Profile.is_active == True)  # noqa: E712
                .all()
            )
            rows = notify_profiles(
                db,
                targets,
                Message(type="system", title="Approval SLA breached",
                        message=f"{name} has breached SLA at {label}.", priority="urgent"),
                link_url=wf.link_url,
                entity_type=req.subject_type,
                entity_id=req.subject_id,
                rich_content={"approval_request_id": req.id, "stage": rec.stage, **sla.to_dict()},
            )
            escalations += len(rows)

    logger.info("[sla] reminders=%d escalations=%d", reminders, escalations)
    return {"reminders_sent": reminders, "escalations_sent": escalations}
