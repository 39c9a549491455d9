from erp_backend.app.models import ApprovalRequest, Profile
from erp_backend.app.services.resolver import can_decide, find_approvers


def _procurement(department="IT"):
    return ApprovalRequest(workflow_type="procurement", subject_type="help_desk_ticket",
                           status="pending_approval", current_stage="department_lead",
                           requester_id="r", department=department, context={})

def _leave(reliever="rel", supervisor="sup"):
    return ApprovalRequest(workflow_type="leave", subject_type="leave_request",
                           status="pending_approval", current_stage="reliever",
                           requester_id="r", context={"reliever_id": reliever, "supervisor_id": supervisor})

def _p(id, role, department=None, lead_departments=None, is_active=True):
    return Profile(id=id, role=role, department=department,
                   lead_departments=lead_departments or [], is_active=is_active)


def test_department_lead_must_lead_request_department():
    req = _procurement("IT")
    assert can_decide(_p("a", "lead", "IT", ["IT"]), req, "department_lead")
    assert can_decide(_p("b", "lead", "IT"), req, "department_lead")        # falls back to own department
    assert not can_decide(_p("c", "lead", "Finance", ["Finance"]), req, "department_lead")
    assert not can_decide(_p("d", "employee", "IT"), req, "department_lead")

def test_head_corporate_services_needs_admin_and_hr_department():
    req = _procurement()
    assert can_decide(_p("a", "admin", "Admin & HR"), req, "head_corporate_services")
    assert can_decide(_p("b", "lead", "Operations", ["Admin & HR"]), req, "head_corporate_services")
    assert not can_decide(_p("c", "admin", "Finance"), req, "head_corporate_services")

def test_managing_director():
    req = _procurement()
    assert can_decide(_p("a", "admin", "Executive Management"), req, "managing_director")
    assert can_decide(_p("b", "super_admin", "Anywhere"), req, "managing_director")
    assert not can_decide(_p("c", "admin", "Admin & HR"), req, "managing_director")

def test_leave_assignees_are_exact():
    req = _leave("rel", "sup")
    assert can_decide(_p("rel", "employee"), req, "reliever")
    assert not can_decide(_p("sup", "lead"), req, "reliever")
    assert can_decide(_p("sup", "lead"), req, "supervisor")
    assert not can_decide(_p("x", "employee"), req, "supervisor")
    assert can_decide(_p("hr", "admin", "Admin & HR"), req, "hr")
    assert not can_decide(_p("rel", "employee"), req, "hr")

def test_super_admin_overrides_every_stage():
    boss = _p("boss", "super_admin")
    for stage in ("reliever", "supervisor", "hr"):
        assert can_decide(boss, _leave(), stage)
    assert can_decide(boss, _procurement("Finance"), "department_lead")

def test_inactive_or_missing_actor_cannot_decide():
    req = _leave("rel", "sup")
    assert not can_decide(None, req, "reliever")
    assert not can_decide(_p("rel", "employee", is_active=False), req, "reliever")

def test_find_approvers_prefers_rule_matches():
    req = _procurement("IT")
    lead = _p("lead", "lead", "IT", ["IT"])
    boss = _p("boss", "super_admin")
    other = _p("other", "lead", "Finance", ["Finance"])
    assert [p.id for p in find_approvers(None, req, "department_lead", [lead, boss, other])] == ["lead"]

def test_find_approvers_falls_back_to_override_roles():
    req = _procurement("Legal")
    boss = _p("boss", "super_admin")
    other = _p("other", "lead", "Finance", ["Finance"])
    assert [p.id for p in find_approvers(None, req, "department_lead", [boss, other])] == ["boss"]
