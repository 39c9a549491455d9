from datetime import datetime, timedelta

import pytest

from erp_backend.app.core.errors import Forbidden, ValidationError
from erp_backend.app.crud.approval import pending_record
from erp_backend.app.crud.ticket import create_ticket
from erp_backend.app.models import Notification
from erp_backend.app.models.sla import ApprovalSlaPolicy
from erp_backend.app.services.sla import (
    DUE_SOON, ON_TRACK, OVERDUE, approval_queue, send_reminders, sla_status, upsert_sla_policy,
)

T0 = datetime(2024, 3, 4, 9, 0)


def test_default_policy_is_24h_with_4h_warning():
    assert sla_status(T0, None, T0 + timedelta(hours=1)).due_status == ON_TRACK
    assert sla_status(T0, None, T0 + timedelta(hours=21)).due_status == DUE_SOON
    s = sla_status(T0, None, T0 + timedelta(hours=25))
    assert s.due_status == OVERDUE
    assert s.due_at == T0 + timedelta(hours=24)
    assert s.hours_remaining == -1

def test_hours_remaining_rounds_toward_zero():
    policy = ApprovalSlaPolicy(due_hours=8, reminder_hours_before=2)
    assert sla_status(T0, policy, T0 + timedelta(hours=4, minutes=6)).hours_remaining == 3
    assert sla_status(T0, policy, T0 + timedelta(hours=8, minutes=30)).hours_remaining == 0

def test_due_exactly_now_is_overdue():
    policy = ApprovalSlaPolicy(due_hours=8, reminder_hours_before=2)
    assert sla_status(T0, policy, T0 + timedelta(hours=8)).due_status == OVERDUE


def test_policy_validation(db, people):
    with pytest.raises(Forbidden):
        upsert_sla_policy(db, people["it_lead"], "procurement", "department_lead")
    with pytest.raises(ValidationError):
        upsert_sla_policy(db, people["hcs"], "procurement", "reliever")
    with pytest.raises(ValidationError):
        upsert_sla_policy(db, people["hcs"], "procurement", "department_lead", due_hours=0)
    with pytest.raises(ValidationError):
        upsert_sla_policy(db, people["hcs"], "procurement", "department_lead", due_hours=4, reminder_hours_before=5)
    with pytest.raises(ValidationError):
        upsert_sla_policy(db, people["hcs"], "procurement", "department_lead", escalate_to_role="ceo")

def test_policy_upsert_updates_in_place(db, people):
    a = upsert_sla_policy(db, people["hcs"], "leave", "hr", due_hours=48)
    b = upsert_sla_policy(db, people["hcs"], "leave", "hr", due_hours=12, reminder_hours_before=2)
    assert a.id == b.id
    assert b.due_hours == 12
    assert db.query(ApprovalSlaPolicy).count() == 1


def test_queue_lists_only_what_the_actor_can_decide(db, people):
    t = create_ticket(db, people["requester"], "Laptops", "IT", request_type="procurement")
    create_ticket(db, people["outsider"], "Calculators", "Finance", request_type="procurement")
    requested = pending_record(db, t.approval_request_id).requested_at

    queue = approval_queue(db, people["it_lead"], now=requested + timedelta(hours=22))
    assert [q["request_id"] for q in queue] == [t.approval_request_id]
    assert queue[0]["stage"] == "department_lead"
    assert queue[0]["stage_label"] == "Department Lead"
    assert queue[0]["due_status"] == DUE_SOON

    assert approval_queue(db, people["requester"]) == []
    # super admins see every pending stage
    assert len(approval_queue(db, people["super"])) == 2
    assert approval_queue(db, people["super"], workflow_type="leave") == []

def test_reminders_and_escalation(db, people):
    upsert_sla_policy(db, people["hcs"], "procurement", "department_lead",
                      due_hours=10, reminder_hours_before=4, escalate_to_role="super_admin")
    t = create_ticket(db, people["requester"], "Laptops", "IT", request_type="procurement")
    requested = pending_record(db, t.approval_request_id).requested_at

    assert send_reminders(db, people["hcs"], now=requested + timedelta(hours=1)) == \
        {"reminders_sent": 0, "escalations_sent": 0}

    res = send_reminders(db, people["hcs"], now=requested + timedelta(hours=7))
    assert res == {"reminders_sent": 1, "escalations_sent": 0}
    reminder = (
        db.query(Notification)
        .filter(Notification.user_id == people["it_lead"].id, Notification.title == "Approval SLA reminder")
        .one()
    )
    assert reminder.priority == "high"

    res = send_reminders(db, people["hcs"], now=requested + timedelta(hours=11))
    assert res == {"reminders_sent": 0, "escalations_sent": 1}
    breach = db.query(Notification).filter(Notification.user_id == people["super"].id).one()
    assert breach.title == "Approval SLA breached"
    assert breach.priority == "urgent"

def test_stages_without_policy_are_skipped(db, people):
    t = create_ticket(db, people["requester"], "Laptops", "IT", request_type="procurement")
    requested = pending_record(db, t.approval_request_id).requested_at
    assert send_reminders(db, people["super"], now=requested + timedelta(days=30)) == \
        {"reminders_sent": 0, "escalations_sent": 0}

def test_reminders_are_admin_only(db, people):
    with pytest.raises(Forbidden):
        send_reminders(db, people["it_lead"])
