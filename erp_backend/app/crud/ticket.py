# erp_backend/app/crud/ticket.py
"""
Help Desk tickets. Procurement tickets drive the ``procurement`` approval
chain; the engine calls back into the hooks at the bottom of this module to
mirror each decision onto the ticket and its timeline.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from erp_backend.app.core.errors import Forbidden, InvalidState, NotFound, ValidationError
from erp_backend.app.crud.approval import (
    DecisionResult, decide, get_request, register_subject_hooks, start_request, started_event,
)
from erp_backend.app.models.approval import ApprovalRecord, ApprovalRequest
from erp_backend.app.models.profile import Profile, Role
from erp_backend.app.models.ticket import PRIORITIES, HelpDeskEvent, HelpDeskTicket, TicketStatus
from erp_backend.app.services.audit import mirror_audit, record_audit
from erp_backend.app.services.events import publish
from erp_backend.app.services.notify import Message, notify_profiles
from erp_backend.app.services.resolver import can_decide
from erp_backend.app.utils.business_time import sla_target
from erp_backend.app.utils.stages import PROCUREMENT, get_workflow

logger = logging.getLogger(__name__)

DEFAULT_PIVOT_REASON = "Procurement required to proceed"
CLOSED_STATUSES = {TicketStatus.RESOLVED.value, TicketStatus.CLOSED.value, TicketStatus.CANCELLED.value}


# -------------------------- scope helpers --------------------------

def is_admin(profile: Profile) -> bool:
    return (profile.role or "") in (Role.ADMIN.value, Role.SUPER_ADMIN.value)

def is_lead(profile: Profile) -> bool:
    return (profile.role or "") == Role.LEAD.value

def can_lead_department(profile: Profile, department: str) -> bool:
    if is_admin(profile):
        return True
    if not is_lead(profile):
        return False
    return department in (profile.lead_departments or []) or profile.department == department

def department_leads(db: Session, department: str) -> List[Profile]:
    leads = (
        db.query(Profile)
        .filter(Profile.role == Role.LEAD.value, Profile.is_active == True)  # noqa: E712
        .order_by(Profile.created_at.asc(), Profile.id.asc())
        .all()
    )
    return [p for p in leads if can_lead_department(p, department)]

def _notify_priority(priority: str) -> str:
    return priority if priority in ("urgent", "high") else "normal"

def add_event(db: Session, ticket: HelpDeskTicket, actor_id: Optional[str], event_type: str,
              old_status: Optional[str] = None, new_status: Optional[str] = None,
              details: Optional[dict] = None) -> HelpDeskEvent:
    ev = HelpDeskEvent(ticket_id=ticket.id, actor_id=actor_id, event_type=event_type,
                       old_status=old_status, new_status=new_status, details=details or {})
    db.add(ev)
    return ev


# -------------------------- reads --------------------------

def get_ticket(db: Session, ticket_id: int) -> HelpDeskTicket:
    t = db.get(HelpDeskTicket, ticket_id)
    if not t:
        raise NotFound("Ticket not found")
    return t

def get_visible_ticket(db: Session, ticket_id: int, actor: Profile) -> HelpDeskTicket:
    t = get_ticket(db, ticket_id)
    if actor.id in (t.requester_id, t.assigned_to) or can_lead_department(actor, t.service_department):
        return t
    req = get_request(db, t.approval_request_id) if t.approval_request_id else None
    if req is not None and req.current_stage:
        if can_decide(actor, req, req.current_stage):
            return t
    raise Forbidden("Forbidden")

def list_tickets(db: Session, actor: Profile, scope: str = "mine", status: Optional[str] = None) -> List[HelpDeskTicket]:
    q = db.query(HelpDeskTicket)
    if scope == "department":
        if not (is_admin(actor) or is_lead(actor)):
            raise Forbidden("Forbidden")
        if not is_admin(actor):
            q = q.filter(HelpDeskTicket.service_department.in_(actor.led_departments() or [""]))
    elif scope == "mine":
        q = q.filter((HelpDeskTicket.requester_id == actor.id) | (HelpDeskTicket.assigned_to == actor.id))
    else:
        raise ValidationError('scope must be "mine" or "department"')
    if status:
        q = q.filter(HelpDeskTicket.status == status)
    return q.order_by(HelpDeskTicket.created_at.desc(), HelpDeskTicket.id.desc()).all()

def events_for(db: Session, ticket_id: int) -> List[HelpDeskEvent]:
    return (
        db.query(HelpDeskEvent)
        .filter(HelpDeskEvent.ticket_id == ticket_id)
        .order_by(HelpDeskEvent.created_at.asc(), HelpDeskEvent.id.asc())
        .all()
    )


# -------------------------- writes --------------------------

def _open_procurement_chain(db: Session, ticket: HelpDeskTicket) -> ApprovalRequest:
    req = start_request(
        db,
        PROCUREMENT,
        subject_id=ticket.id,
        requester_id=ticket.requester_id,
        title=f"{ticket.ticket_number} - {ticket.title}",
        priority=ticket.priority,
        department=ticket.service_department,
        category=ticket.category,
        assignee_id=ticket.assigned_to,
    )
    ticket.approval_request_id = req.id
    return req

def create_ticket(
    db: Session,
    actor: Profile,
    title: str,
    service_department: str,
    description: Optional[str] = None,
    request_type: str = "support",
    category: Optional[str] = None,
    priority: Optional[str] = None,
) -> HelpDeskTicket:
    title = (title or "").strip()
    service_department = (service_department or "").strip()
    if not title or not service_department:
        raise ValidationError("title and service_department are required")
    priority = (priority or "medium").lower()
    if priority not in PRIORITIES:
        raise ValidationError("Invalid priority")
    request_type = "procurement" if request_type == "procurement" else "support"

    if is_lead(actor) and actor.lead_departments and service_department not in actor.lead_departments:
        raise Forbidden("Forbidden: outside your department scope")

    now = datetime.utcnow()
    approval_required = request_type == "procurement"
    t = HelpDeskTicket(
        title=title,
        description=(description or "").strip() or None,
        request_type=request_type,
        category=(category or "").strip() or None,
        service_department=service_department,
        priority=priority,
        status=TicketStatus.PENDING_APPROVAL.value if approval_required else TicketStatus.NEW.value,
        requester_id=actor.id,
        approval_required=approval_required,
        sla_target_at=sla_target(priority, now),
        submitted_at=now,
        paused_at=now if approval_required else None,
        created_at=now,
        updated_at=now,
    )
    req = None
    try:
        db.add(t)
        db.flush()
        t.ticket_number = f"HD-{t.id:06d}"
        if approval_required:
            req = _open_procurement_chain(db, t)
        add_event(db, t, actor.id, "ticket_created", new_status=t.status,
                  details={"priority": priority, "request_type": request_type,
                           "service_department": service_department})
        audit = record_audit(db, "HELP_DESK_TICKET_CREATED", "help_desk_ticket", t.id, actor.id,
                             {"status": t.status, "request_type": request_type, "priority": priority,
                              "service_department": service_department}, commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(t)
    mirror_audit(audit)
    logger.info("[help-desk] created %s type=%s dept=%s", t.ticket_number, request_type, service_department)

    if req is not None:
        publish(db, [started_event(req)])
    else:
        notify_profiles(
            db,
            department_leads(db, service_department),
            Message(type="task_assigned", title="New help desk ticket in your queue",
                    message=f"{t.ticket_number} - {t.title}", priority=_notify_priority(priority)),
            link_url="/admin/help-desk",
            entity_type="help_desk_ticket",
            entity_id=t.id,
            actor_id=actor.id,
            rich_content={"request_type": request_type, "priority": priority,
                          "service_department": service_department},
            category="tasks",
        )
    return t

def assign_ticket(db: Session, ticket_id: int, actor: Profile, assigned_to: str) -> HelpDeskTicket:
    if not assigned_to:
        raise ValidationError("assigned_to is required")
    t = get_ticket(db, ticket_id)
    if not can_lead_department(actor, t.service_department):
        raise Forbidden("Forbidden")
    assignee = db.get(Profile, assigned_to)
    if assignee is None or assignee.is_active is False:
        raise ValidationError("assigned_to must be an active profile")

    now = datetime.utcnow()
    old_status, old_assignee = t.status, t.assigned_to
    try:
        t.assigned_to = assignee.id
        t.assigned_by = actor.id
        if t.status == TicketStatus.NEW.value:
            t.status = TicketStatus.ASSIGNED.value
        t.assigned_at = t.assigned_at or now
        t.updated_at = now
        if t.approval_request_id:
            req = get_request(db, t.approval_request_id)
            if req is not None and req.status == get_workflow(req.workflow_type).active_status:
                req.assignee_id = assignee.id
        add_event(db, t, actor.id, "ticket_assigned", old_status=old_status, new_status=t.status,
                  details={"from": old_assignee, "to": assignee.id})
        audit = record_audit(db, "HELP_DESK_TICKET_ASSIGNED", "help_desk_ticket", t.id, actor.id,
                             {"from": old_assignee, "to": assignee.id}, commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(t)
    mirror_audit(audit)

    notify_profiles(
        db,
        [assignee],
        Message(type="task_assigned", title="Help desk ticket assigned",
                message=f"{t.ticket_number} - {t.title}", priority=_notify_priority(t.priority)),
        link_url="/portal/help-desk",
        entity_type="help_desk_ticket",
        entity_id=t.id,
        actor_id=actor.id,
        rich_content={"service_department": t.service_department, "priority": t.priority},
        category="tasks",
    )
    return t

def pivot_ticket(db: Session, ticket_id: int, actor: Profile, reason: Optional[str] = None) -> HelpDeskTicket:
    """Move a ticket into the procurement flow, starting again at the first stage."""
    t = get_ticket(db, ticket_id)
    if not (t.assigned_to == actor.id or can_lead_department(actor, t.service_department)):
        raise Forbidden("Forbidden")
    if t.status in CLOSED_STATUSES:
        raise InvalidState(f"Ticket is {t.status}")
    if t.approval_request_id:
        current = get_request(db, t.approval_request_id)
        if current is not None and current.status == get_workflow(current.workflow_type).active_status:
            raise InvalidState("Ticket already has an active procurement approval")

    pivot_reason = (reason or "").strip() or DEFAULT_PIVOT_REASON
    now = datetime.utcnow()
    old_status, old_type = t.status, t.request_type
    try:
        t.request_type = "procurement"
        t.approval_required = True
        t.procurement_reason = pivot_reason
        t.status = TicketStatus.PENDING_APPROVAL.value
        t.paused_at = now
        t.resumed_at = None
        t.updated_at = now
        req = _open_procurement_chain(db, t)
        add_event(db, t, actor.id, "pivot_to_procurement", old_status=old_status,
                  new_status=t.status, details={"reason": pivot_reason})
        audit = record_audit(db, "HELP_DESK_TICKET_PIVOTED", "help_desk_ticket", t.id, actor.id,
                             {"old_request_type": old_type, "old_status": old_status,
                              "procurement_reason": pivot_reason, "approval_request_id": req.id},
                             commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(t)
    mirror_audit(audit)
    logger.info("[help-desk] %s pivoted to procurement (request=%s)", t.ticket_number, req.id)

    publish(db, [started_event(req)])
    return t

def decide_ticket(db: Session, ticket_id: int, actor: Profile, decision: str,
                  comments: Optional[str] = None) -> DecisionResult:
    t = get_ticket(db, ticket_id)
    if not t.approval_request_id:
        raise InvalidState("Ticket has no procurement approval")
    return decide(db, t.approval_request_id, actor, decision, comments)


# -------------------------- engine hooks --------------------------

def _ticket_for(db: Session, req: ApprovalRequest) -> Optional[HelpDeskTicket]:
    t = db.get(HelpDeskTicket, req.subject_id) if req.subject_id else None
    if t is None:
        logger.warning("[help-desk] approval request %s points at missing ticket %s", req.id, req.subject_id)
    return t

def _on_advanced(db: Session, req: ApprovalRequest, record: ApprovalRecord, actor: Profile, now: datetime) -> None:
    t = _ticket_for(db, req)
    if t is None:
        return
    t.updated_at = now
    add_event(db, t, actor.id, "approval_approved", old_status=t.status, new_status=t.status,
              details={"stage": record.stage, "next_stage": req.current_stage, "comments": record.comments})

def _on_approved(db: Session, req: ApprovalRequest, record: ApprovalRecord, actor: Profile, now: datetime) -> None:
    t = _ticket_for(db, req)
    if t is None:
        return
    old = t.status
    t.status = TicketStatus.APPROVED_FOR_PROCUREMENT.value
    t.resumed_at = now
    t.updated_at = now
    add_event(db, t, actor.id, "approval_approved", old_status=old, new_status=t.status,
              details={"stage": record.stage, "final": True, "comments": record.comments})

def _on_rejected(db: Session, req: ApprovalRequest, record: ApprovalRecord, actor: Profile, now: datetime) -> None:
    t = _ticket_for(db, req)
    if t is None:
        return
    old = t.status
    t.status = TicketStatus.REJECTED.value
    t.updated_at = now
    add_event(db, t, actor.id, "approval_rejected", old_status=old, new_status=t.status,
              details={"stage": record.stage, "comments": record.comments})

register_subject_hooks(PROCUREMENT, on_advanced=_on_advanced, on_approved=_on_approved, on_rejected=_on_rejected)
