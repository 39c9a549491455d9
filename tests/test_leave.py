from datetime import date, timedelta

import pytest

from erp_backend.app.core.errors import Forbidden, InvalidState, ValidationError
from erp_backend.app.crud.approval import decide
from erp_backend.app.crud.leave import (
    create_leave_request, evidence_summary, get_or_create_balance, list_leave_requests,
    required_documents_for, upload_evidence, upsert_policy, verify_evidence,
)
from erp_backend.app.models import ApprovalRecord, ApprovalRequest, LeaveRequest, Notification


def _dates(offset=7, days=3):
    start = date.today() + timedelta(days=offset)
    return start, start + timedelta(days=days - 1)

def _file(db, people, leave_type, requester="requester", reliever="colleague", **kw):
    start, end = kw.pop("dates", _dates())
    return create_leave_request(db, people[requester], leave_type.id, start, end,
                                reliever_id=people[reliever].id, **kw)

def _to_hr(db, people, leave):
    decide(db, leave.approval_request_id, people["colleague"], "approved")
    decide(db, leave.approval_request_id, people["it_lead"], "approved")

def _leave(db, leave_id):
    db.expire_all()
    return db.get(LeaveRequest, leave_id)


def test_request_starts_at_reliever_with_default_supervisor(db, people, make_leave_type):
    lt = make_leave_type()
    leave = _file(db, people, lt)
    assert leave.days_count == 3
    assert leave.supervisor_id == people["it_lead"].id
    req = db.get(ApprovalRequest, leave.approval_request_id)
    assert req.workflow_type == "leave"
    assert req.current_stage == "reliever"
    assert req.context["reliever_id"] == people["colleague"].id

    # the reliever is told about it
    note = db.query(Notification).filter(Notification.user_id == people["colleague"].id).one()
    assert note.type == "approval_request"

def test_full_chain_deducts_balance(db, people, make_leave_type):
    lt = make_leave_type(annual_days=20)
    leave = _file(db, people, lt)
    _to_hr(db, people, leave)
    res = decide(db, leave.approval_request_id, people["hcs"], "approved")
    assert res.status == "approved"
    assert res.evidence_override is False

    leave = _leave(db, leave.id)
    assert leave.status == "approved"
    assert leave.decided_at is not None
    bal = get_or_create_balance(db, people["requester"].id, lt.id)
    assert bal.used_days == 3
    assert bal.balance_days == 17

def test_only_the_named_reliever_can_decide(db, people, make_leave_type):
    leave = _file(db, people, make_leave_type())
    with pytest.raises(Forbidden):
        decide(db, leave.approval_request_id, people["outsider"], "approved")
    with pytest.raises(Forbidden):
        # the supervisor cannot jump ahead of the reliever
        decide(db, leave.approval_request_id, people["it_lead"], "approved")

def test_reliever_rejection_ends_the_chain(db, people, make_leave_type):
    lt = make_leave_type()
    leave = _file(db, people, lt)
    decide(db, leave.approval_request_id, people["colleague"], "rejected", "I am on a course that week")
    assert _leave(db, leave.id).status == "rejected"
    bal = get_or_create_balance(db, people["requester"].id, lt.id)
    assert bal.used_days == 0
    with pytest.raises(InvalidState):
        decide(db, leave.approval_request_id, people["it_lead"], "approved")

def test_evidence_gate_and_override(db, people, make_leave_type):
    lt = make_leave_type("sick", required_documents=["medical_certificate"])
    leave = _file(db, people, lt)
    rid = leave.approval_request_id
    _to_hr(db, people, leave)

    with pytest.raises(ValidationError) as exc:
        decide(db, rid, people["hcs"], "approved")
    assert exc.value.extra["missing_documents"] == ["medical_certificate"]

    # override needs a reason
    with pytest.raises(ValidationError):
        decide(db, rid, people["hcs"], "approved", override_evidence=True)

    req = db.get(ApprovalRequest, rid)
    db.refresh(req)
    assert req.current_stage == "hr"
    assert _leave(db, leave.id).status == "pending"

    res = decide(db, rid, people["hcs"], "approved", "Certificate seen in person", override_evidence=True)
    assert res.status == "approved"
    assert res.evidence_override is True
    rec = db.query(ApprovalRecord).filter(ApprovalRecord.request_id == rid, ApprovalRecord.stage == "hr").one()
    assert rec.evidence_override is True
    assert get_or_create_balance(db, people["requester"].id, lt.id).used_days == 3

def test_verified_evidence_opens_the_gate(db, people, make_leave_type):
    lt = make_leave_type("sick", required_documents=["medical_certificate"])
    leave = _file(db, people, lt)
    ev = upload_evidence(db, people["requester"], leave.id, "medical_certificate", "https://files.example.com/mc.pdf")
    complete, missing = evidence_summary(db, leave)
    assert not complete and missing == ["medical_certificate"]

    verify_evidence(db, people["hcs"], ev.id, "verified")
    assert evidence_summary(db, _leave(db, leave.id)) == (True, [])

    _to_hr(db, people, leave)
    res = decide(db, leave.approval_request_id, people["hcs"], "approved")
    assert res.status == "approved"
    assert res.evidence_override is False

def test_rejected_evidence_keeps_the_gate_closed(db, people, make_leave_type):
    lt = make_leave_type("sick", required_documents=["medical_certificate"])
    leave = _file(db, people, lt)
    ev = upload_evidence(db, people["requester"], leave.id, "medical_certificate", "https://files.example.com/mc.pdf")
    verify_evidence(db, people["hcs"], ev.id, "rejected", "Unreadable scan")
    _to_hr(db, people, leave)
    with pytest.raises(ValidationError):
        decide(db, leave.approval_request_id, people["hcs"], "approved")

    notes = db.query(Notification).filter(Notification.user_id == people["requester"].id).all()
    assert any("Still missing: medical_certificate" in n.message for n in notes)

def test_override_can_be_disabled_by_policy(db, people, make_leave_type):
    lt = make_leave_type("study", required_documents=["exam_timetable"], override_allowed=False)
    leave = _file(db, people, lt)
    _to_hr(db, people, leave)
    with pytest.raises(ValidationError) as exc:
        decide(db, leave.approval_request_id, people["hcs"], "approved", "trust me", override_evidence=True)
    assert "not allowed" in str(exc.value)

def test_rejecting_at_hr_ignores_the_gate(db, people, make_leave_type):
    lt = make_leave_type("sick", required_documents=["medical_certificate"])
    leave = _file(db, people, lt)
    _to_hr(db, people, leave)
    res = decide(db, leave.approval_request_id, people["hcs"], "rejected", "No certificate")
    assert res.status == "rejected"

def test_medical_certificate_threshold(db, people, make_leave_type):
    lt = make_leave_type("sick", medical_certificate_after_days=2)
    short = _file(db, people, lt, dates=_dates(7, 2))
    assert short.required_documents == []
    long = _file(db, people, lt, dates=_dates(30, 5))
    assert long.required_documents == ["medical_certificate"]

def test_required_documents_for_without_policy():
    assert required_documents_for(None, 10) == []

def test_overlap_and_reliever_availability(db, people, make_leave_type):
    lt = make_leave_type()
    _file(db, people, lt)
    with pytest.raises(ValidationError, match="overlapping"):
        _file(db, people, lt)
    # the requester is away on those dates, so cannot relieve anyone
    with pytest.raises(ValidationError, match="unavailable"):
        _file(db, people, lt, requester="colleague", reliever="requester")

def test_reliever_and_supervisor_must_differ(db, people, make_leave_type):
    lt = make_leave_type()
    with pytest.raises(ValidationError):
        _file(db, people, lt, reliever="requester")
    with pytest.raises(ValidationError):
        _file(db, people, lt, reliever="it_lead")    # default supervisor is the IT lead
    with pytest.raises(ValidationError):
        _file(db, people, lt, supervisor_id=people["requester"].id)

def test_no_department_lead(db, people, make_leave_type):
    lt = make_leave_type()
    with pytest.raises(ValidationError, match="No department lead"):
        _file(db, people, lt, requester="hcs", reliever="md")

def test_end_before_start(db, people, make_leave_type):
    lt = make_leave_type()
    start, end = _dates()
    with pytest.raises(ValidationError):
        _file(db, people, lt, dates=(end, start))

def test_insufficient_balance(db, people, make_leave_type):
    lt = make_leave_type(annual_days=2)
    with pytest.raises(ValidationError, match="Insufficient leave balance"):
        _file(db, people, lt)
    assert db.query(LeaveRequest).count() == 0

def test_max_days_per_request(db, people, make_leave_type):
    lt = make_leave_type(max_days_per_request=2)
    with pytest.raises(ValidationError, match="at most 2 days"):
        _file(db, people, lt)

def test_only_requester_uploads_evidence(db, people, make_leave_type):
    leave = _file(db, people, make_leave_type())
    with pytest.raises(Forbidden):
        upload_evidence(db, people["colleague"], leave.id, "medical_certificate", "https://x/y.pdf")

def test_evidence_review_is_hr_only(db, people, make_leave_type):
    leave = _file(db, people, make_leave_type())
    ev = upload_evidence(db, people["requester"], leave.id, "medical_certificate", "https://x/y.pdf")
    with pytest.raises(Forbidden):
        verify_evidence(db, people["it_lead"], ev.id, "verified")
    with pytest.raises(ValidationError):
        verify_evidence(db, people["hcs"], ev.id, "maybe")

def test_policy_upsert_changes_gate(db, people, make_leave_type):
    lt = make_leave_type("family", with_policy=False)
    p = upsert_policy(db, people["hcs"], lt.id, required_documents=["birth_certificate", " "], annual_days=5)
    assert p.required_documents == ["birth_certificate"]
    assert p.annual_days == 5
    with pytest.raises(ValidationError):
        upsert_policy(db, people["hcs"], lt.id, notice_days=-1)
    with pytest.raises(Forbidden):
        upsert_policy(db, people["requester"], lt.id, annual_days=1)

def test_list_scopes(db, people, make_leave_type):
    leave = _file(db, people, make_leave_type())
    assert [r.id for r in list_leave_requests(db, people["requester"], "mine")] == [leave.id]
    assert [r.id for r in list_leave_requests(db, people["colleague"], "relieving")] == [leave.id]
    assert [r.id for r in list_leave_requests(db, people["it_lead"], "relieving")] == [leave.id]
    with pytest.raises(Forbidden):
        list_leave_requests(db, people["requester"], "all")
    assert len(list_leave_requests(db, people["hcs"], "all")) == 1
