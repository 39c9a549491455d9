# erp_backend/app/services/notify.py
"""
Notification fan-out for approval events.

Subscribed to the workflow event bus in ``main.py``. Each event becomes one
in-app Notification per recipient plus a best-effort e-mail through the
configured webhook. Nothing in here raises: a failed delivery is logged and
counted, the decision it reports on is already committed.
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import requests
from sqlalchemy.orm import Session

from erp_backend.app.metrics import notification_failures_total, notifications_sent_total
from erp_backend.app.models.approval import ApprovalRequest
from erp_backend.app.models.notification import Notification
from erp_backend.app.models.profile import Profile
from erp_backend.app.services.events import (
    RequestApproved, RequestRejected, RequestStarted, StageAdvanced, WorkflowEvent,
)
from erp_backend.app.services.resolver import find_approvers
from erp_backend.app.utils.runtime_config import get_email_webhook
from erp_backend.app.utils.stages import get_workflow

logger = logging.getLogger(__name__)

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")
EMAIL_TIMEOUT_SEC = float(os.getenv("EMAIL_TIMEOUT_SEC", "10"))


@dataclass
class Message:
    type: str
    title: str
    message: str
    priority: str = "normal"


def send_email(to: str, subject: str, body: str, link_url: Optional[str] = None) -> bool:
    """POST one mail to the e-mail webhook. Returns False instead of raising."""
    url = get_email_webhook()
    if not url:
        logger.info("[email] webhook not set; skipping send to %s", to)
        return False
    payload = {"to": to, "subject": subject, "text": body}
    if link_url:
        payload["link"] = f"{APP_BASE_URL}{link_url}"
    try:
        r = requests.post(url, json=payload, timeout=EMAIL_TIMEOUT_SEC)
        if r.status_code >= 300:
            logger.warning("[email] POST status=%s body=%s", r.status_code, r.text[:300])
            notification_failures_total.labels(channel="email").inc()
            return False
    except requests.RequestException as e:
        logger.warning("[email] send error: %s", e)
        notification_failures_total.labels(channel="email").inc()
        return False
    notifications_sent_total.labels(channel="email").inc()
    return True


def notify_profiles(
    db: Session,
    recipients: Iterable[Profile],
    msg: Message,
    link_url: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    actor_id: Optional[str] = None,
    rich_content: Optional[dict] = None,
    category: str = "approvals",
    email: bool = True,
) -> List[Notification]:
    """
    Store one in-app notification per distinct recipient (never the actor)
    and mirror each by e-mail. Returns the stored rows, or [] on failure.
    """
    seen = set()
    targets: List[Profile] = []
    for p in recipients:
        if p is None or p.id in seen or (actor_id and p.id == actor_id):
            continue
        seen.add(p.id)
        targets.append(p)
    if not targets:
        return []

    rows = [
        Notification(
            user_id=p.id,
            type=msg.type,
            category=category,
            title=msg.title,
            message=msg.message,
            priority=msg.priority,
            link_url=link_url,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            rich_content=dict(rich_content or {}),
        )
        for p in targets
    ]
    try:
        db.add_all(rows)
        db.commit()
    except Exception:
        db.rollback()
        notification_failures_total.labels(channel="in_app").inc(len(rows))
        logger.exception("[notify] in-app insert failed for %s=%s", entity_type, entity_id)
        return []
    notifications_sent_total.labels(channel="in_app").inc(len(rows))

    if email:
        for p in targets:
            if p.email:
                send_email(p.email, msg.title, msg.message, link_url)
    return rows

def dispatch(
    db: Session,
    recipients: Iterable[Profile],
    msg: Message,
    request: ApprovalRequest,
    actor_id: Optional[str] = None,
    email: bool = True,
) -> List[Notification]:
    return notify_profiles(
        db,
        recipients,
        msg,
        link_url=get_workflow(request.workflow_type).link_url,
        entity_type=request.subject_type,
        entity_id=request.subject_id,
        actor_id=actor_id,
        rich_content={
            "approval_request_id": request.id,
            "workflow": request.workflow_type,
            "stage": request.current_stage,
            "status": request.status,
        },
        email=email,
    )


# -------------------------- event -> recipients/message --------------------------

def _label(workflow_type: str, stage: Optional[str]) -> str:
    if not stage:
        return ""
    return get_workflow(workflow_type).stage(stage).label

def _subject(request: ApprovalRequest) -> str:
    if request.title:
        return f'"{request.title}"'
    return f"request #{request.id}"

def _approval_priority(request: ApprovalRequest) -> str:
    return "urgent" if (request.priority or "").lower() == "urgent" else "high"

def _profiles(db: Session, ids: Iterable[Optional[str]]) -> List[Profile]:
    wanted = [i for i in ids if i]
    if not wanted:
        return []
    by_id: Dict[str, Profile] = {p.id: p for p in db.query(Profile).filter(Profile.id.in_(wanted)).all()}
    return [by_id[i] for i in wanted if i in by_id]

def recipients_for(db: Session, event: WorkflowEvent, request: ApprovalRequest) -> List[Profile]:
    """
    Pending stage approvers for started/advanced events (plus the assignee
    once the chain advances), the requester and assignee for terminal ones.
    """
    if isinstance(event, RequestStarted):
        return find_approvers(db, request, event.stage)
    if isinstance(event, StageAdvanced):
        if not event.next_stage:
            return []
        return find_approvers(db, request, event.next_stage) + _profiles(db, [request.assignee_id])
    if isinstance(event, (RequestApproved, RequestRejected)):
        return _profiles(db, [request.requester_id, request.assignee_id])
    return []

def message_for(event: WorkflowEvent, request: ApprovalRequest) -> Optional[Message]:
    wf_type = request.workflow_type
    subject = _subject(request)
    if isinstance(event, RequestStarted):
        return Message(
            type="approval_request",
            title=f"Approval required: {_label(wf_type, event.stage)}",
            message=f"{subject} is waiting for your {_label(wf_type, event.stage)} approval.",
            priority=_approval_priority(request),
        )
    if isinstance(event, StageAdvanced):
        return Message(
            type="approval_request",
            title=f"Approval required: {_label(wf_type, event.next_stage)}",
            message=(f"{subject} was approved at {_label(wf_type, event.stage)} "
                     f"and is waiting for your {_label(wf_type, event.next_stage)} approval."),
            priority=_approval_priority(request),
        )
    if isinstance(event, RequestRejected):
        reason = f" Reason: {event.comments}" if event.comments else ""
        return Message(
            type="approval_rejected",
            title="Request rejected",
            message=f"{subject} was rejected at {_label(wf_type, event.stage)}.{reason}",
            priority="high",
        )
    if isinstance(event, RequestApproved):
        text = f"{subject} received final approval ({request.status.replace('_', ' ')})."
        if event.evidence_override:
            text += " Approved with an evidence override."
        return Message(type="approval_granted", title="Request approved", message=text)
    return None

def handle_event(db: Session, event: WorkflowEvent) -> None:
    """Event bus subscriber."""
    request = db.get(ApprovalRequest, event.request_id)
    if request is None:
        logger.warning("[notify] approval request %s vanished before fan-out", event.request_id)
        return
    msg = message_for(event, request)
    if msg is None:
        return
    recipients = recipients_for(db, event, request)
    if not recipients:
        logger.info("[notify] no recipients for %s(request=%s)", type(event).__name__, request.id)
        return
    rows = dispatch(db, recipients, msg, request, actor_id=event.actor_id)
    logger.info("[notify] %s(request=%s) -> %d recipient(s)", type(event).__name__, request.id, len(rows))


# -------------------------- inbox --------------------------

def list_notifications(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read == False)  # noqa: E712
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

def mark_read(db: Session, user_id: str, notification_id: int) -> Optional[Notification]:
    row = db.get(Notification, notification_id)
    if row is None or row.user_id != user_id:
        return None
    row.is_read = True
    db.commit()
    db.refresh(row)
    return row
