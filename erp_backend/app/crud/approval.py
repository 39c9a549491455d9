# erp_backend/app/crud/approval.py
"""
Generic sequential approval engine shared by the procurement and leave
workflows.

A request moves through the stages of its workflow one at a time. Exactly one
ApprovalRecord is pending while the request is active and none once it is
terminal. ``decide`` applies one decision inside a single transaction and
publishes domain events only after that transaction commits.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from erp_backend.app.core.errors import Forbidden, InvalidState, NotFound, ValidationError
from erp_backend.app.models.approval import ApprovalRecord, ApprovalRequest, RecordStatus
from erp_backend.app.models.profile import Profile
from erp_backend.app.services.audit import mirror_audit, record_audit
from erp_backend.app.services.events import (
    RequestApproved, RequestRejected, RequestStarted, StageAdvanced, WorkflowEvent, publish,
)
from erp_backend.app.services.evidence import get_gate
from erp_backend.app.services.resolver import can_decide
from erp_backend.app.utils.stages import first_stage, get_workflow, next_stage
from erp_backend.app.metrics import (
    approval_decision_conflicts_total,
    approval_decisions_total,
    approval_requests_started_total,
    decision_latency_seconds,
    evidence_overrides_total,
)

logger = logging.getLogger(__name__)

VALID_DECISIONS = {RecordStatus.APPROVED.value, RecordStatus.REJECTED.value}


# -------------------------- subject hooks --------------------------
# Tickets and leave requests mirror the outcome onto their own rows. Hooks run
# inside the decision transaction: (db, request, record, actor, now).

Hook = Callable[[Session, ApprovalRequest, ApprovalRecord, Profile, datetime], None]

@dataclass
class SubjectHooks:
    on_advanced: Optional[Hook] = None
    on_approved: Optional[Hook] = None
    on_rejected: Optional[Hook] = None

_SUBJECT_HOOKS: Dict[str, SubjectHooks] = {}

def register_subject_hooks(workflow_type: str, **hooks: Hook) -> None:
    _SUBJECT_HOOKS[workflow_type] = SubjectHooks(**hooks)

def _run_hook(name: str, db: Session, req: ApprovalRequest, record: ApprovalRecord,
              actor: Profile, now: datetime) -> None:
    hooks = _SUBJECT_HOOKS.get(req.workflow_type)
    fn = getattr(hooks, name, None) if hooks else None
    if fn is not None:
        fn(db, req, record, actor, now)


# -------------------------- record store --------------------------

def get_request(db: Session, request_id: int) -> Optional[ApprovalRequest]:
    return db.get(ApprovalRequest, request_id)

def list_requests(db: Session, status: Optional[str] = None, workflow_type: Optional[str] = None,
                  requester_id: Optional[str] = None, limit: int = 100) -> List[ApprovalRequest]:
    q = db.query(ApprovalRequest)
    if status:
        q = q.filter(ApprovalRequest.status == status)
    if workflow_type:
        q = q.filter(ApprovalRequest.workflow_type == workflow_type)
    if requester_id:
        q = q.filter(ApprovalRequest.requester_id == requester_id)
    return q.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()).limit(limit).all()

def list_records(db: Session, request_id: int) -> List[ApprovalRecord]:
    return (
        db.query(ApprovalRecord)
        .filter(ApprovalRecord.request_id == request_id)
        .order_by(ApprovalRecord.requested_at.asc(), ApprovalRecord.id.asc())
        .all()
    )

def pending_record(db: Session, request_id: int) -> Optional[ApprovalRecord]:
    rows = (
        db.query(ApprovalRecord)
        .filter(ApprovalRecord.request_id == request_id,
                ApprovalRecord.status == RecordStatus.PENDING.value)
        .all()
    )
    if len(rows) > 1:
        # the partial unique index should make this impossible
        raise InvalidState(f"Approval request {request_id} has {len(rows)} pending records")
    return rows[0] if rows else None

def claim_record(db: Session, record: ApprovalRecord, approver_id: str, decision: str,
                 comments: Optional[str], now: datetime, evidence_override: bool = False) -> bool:
    """
    Move ``record`` out of pending. The UPDATE only matches while the row is
    still pending, so of two concurrent deciders exactly one gets True.
    """
    res = db.execute(
        update(ApprovalRecord)
        .where(ApprovalRecord.id == record.id,
               ApprovalRecord.status == RecordStatus.PENDING.value)
        .values(
            status=decision,
            approver_id=approver_id,
            comments=comments or None,
            decided_at=now,
            evidence_override=evidence_override,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    db.refresh(record)
    return True


# -------------------------- starting a chain --------------------------

def start_request(
    db: Session,
    workflow_type: str,
    subject_id: Optional[int],
    requester_id: str,
    title: Optional[str] = None,
    priority: Optional[str] = None,
    department: Optional[str] = None,
    category: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
    assignee_id: Optional[str] = None,
) -> ApprovalRequest:
    """
    Open a chain in "first stage pending". Joins the caller's transaction;
    the caller commits and then publishes ``started_event(req)``.
    """
    wf = get_workflow(workflow_type)
    stage = first_stage(workflow_type)
    now = datetime.utcnow()
    req = ApprovalRequest(
        workflow_type=workflow_type,
        subject_type=wf.subject_type,
        subject_id=subject_id,
        status=wf.active_status,
        current_stage=stage,
        requester_id=requester_id,
        assignee_id=assignee_id,
        title=title,
        priority=priority,
        department=department,
        category=category,
        context=dict(context or {}),
        created_at=now,
        updated_at=now,
    )
    db.add(req)
    db.flush()
    db.add(ApprovalRecord(request_id=req.id, stage=stage,
                          status=RecordStatus.PENDING.value, requested_at=now))
    db.flush()
    approval_requests_started_total.labels(workflow=workflow_type).inc()
    return req

def started_event(req: ApprovalRequest) -> RequestStarted:
    return RequestStarted(request_id=req.id, workflow_type=req.workflow_type,
                          stage=req.current_stage, actor_id=req.requester_id)


# -------------------------- deciding --------------------------

@dataclass
class DecisionResult:
    request_id: int
    stage: str
    decision: str
    status: str
    next_stage: Optional[str] = None
    evidence_override: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "stage": self.stage,
            "decision": self.decision,
            "status": self.status,
            "next_stage": self.next_stage,
        }

def decide(
    db: Session,
    request_id: int,
    actor: Optional[Profile],
    decision: str,
    comments: Optional[str] = None,
    override_evidence: bool = False,
) -> DecisionResult:
    """
    Approve or reject the pending stage of a request.

    Raises NotFound, InvalidState, Forbidden or ValidationError without
    changing anything. On success the record, the request and the subject
    row are committed together, then notifications are fanned out.
    """
    t0 = time.perf_counter()
    try:
        result, events, audit_row = _apply_decision(db, request_id, actor, decision, comments, override_evidence)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        decision_latency_seconds.observe(time.perf_counter() - t0)

    approval_decisions_total.labels(workflow=events[0].workflow_type, decision=result.decision).inc()
    if result.evidence_override:
        evidence_overrides_total.inc()
    mirror_audit(audit_row)
    logger.info("[approval] request=%s stage=%s decision=%s status=%s",
                result.request_id, result.stage, result.decision, result.status)

    publish(db, events)
    return result

def _apply_decision(db: Session, request_id: int, actor: Optional[Profile], decision: str,
                    comments: Optional[str], override_evidence: bool):
    req = (
        db.query(ApprovalRequest)
        .filter(ApprovalRequest.id == request_id)
        .with_for_update()
        .first()
    )
    if not req:
        raise NotFound(f"Approval request {request_id} not found")

    wf = get_workflow(req.workflow_type)

    # Terminal states are immutable
    if req.status != wf.active_status:
        raise InvalidState(f"Approval request is already {req.status}")

    record = pending_record(db, req.id)
    if record is None:
        raise InvalidState("No pending approval for this request")
    if record.stage != req.current_stage:
        raise InvalidState(
            f"Pending approval stage '{record.stage}' does not match current stage '{req.current_stage}'"
        )

    if not can_decide(actor, req, record.stage):
        raise Forbidden("You are not authorized to decide this approval stage")

    # payloads arrive loosely typed from HTTP; check them only after authorization
    d = decision.strip().lower() if isinstance(decision, str) else ""
    if d not in VALID_DECISIONS:
        raise ValidationError('decision must be "approved" or "rejected"')
    if comments is not None and not isinstance(comments, str):
        raise ValidationError("comments must be a string")
    if not isinstance(override_evidence, bool):
        raise ValidationError("override_evidence must be a boolean")
    note = (comments or "").strip() or None
    if d in wf.comments_required and not note:
        raise ValidationError(f"Comments are required when the decision is '{d}'")

    upcoming = next_stage(req.workflow_type, record.stage) if d == RecordStatus.APPROVED.value else None

    # Final stage of a gated workflow: precondition check before anything is written
    overridden = False
    if d == RecordStatus.APPROVED.value and upcoming is None:
        gate = get_gate(wf.terminal_gate)
        if gate is not None:
            overridden = gate.check(db, req, record, actor, note, override_evidence).overridden

    now = datetime.utcnow()
    if not claim_record(db, record, actor.id, d, note, now, evidence_override=overridden):
        approval_decision_conflicts_total.labels(workflow=req.workflow_type).inc()
        raise InvalidState("No pending approval for this request")

    old_status = req.status
    common = dict(request_id=req.id, workflow_type=req.workflow_type, stage=record.stage,
                  actor_id=actor.id, comments=note)

    if d == RecordStatus.REJECTED.value:
        req.status = wf.rejected_status
        req.rejected_stage = record.stage
        req.current_stage = None
        req.completed_at = now
        event: WorkflowEvent = RequestRejected(**common)
        hook = "on_rejected"
    elif upcoming is None:
        req.status = wf.approved_status
        req.current_stage = None
        req.completed_at = now
        event = RequestApproved(evidence_override=overridden, **common)
        hook = "on_approved"
    else:
        db.add(ApprovalRecord(request_id=req.id, stage=upcoming,
                              status=RecordStatus.PENDING.value, requested_at=now))
        req.current_stage = upcoming
        req.status = wf.active_status
        event = StageAdvanced(next_stage=upcoming, **common)
        hook = "on_advanced"
    req.updated_at = now

    _run_hook(hook, db, req, record, actor, now)

    audit_row = record_audit(
        db,
        "APPROVAL_DECIDED",
        "approval_request",
        req.id,
        actor.id,
        {
            "workflow": req.workflow_type,
            "stage": record.stage,
            "decision": d,
            "comments": note,
            "old_status": old_status,
            "new_status": req.status,
            "next_stage": upcoming,
            "evidence_override": overridden,
        },
        commit=False,
    )
    db.flush()

    result = DecisionResult(
        request_id=req.id,
        stage=record.stage,
        decision=d,
        status=req.status,
        next_stage=upcoming,
        evidence_override=overridden,
    )
    return result, [event], audit_row
