from datetime import date, timedelta


def _ticket(client, auth, profile, **body):
    payload = {"title": "New laptops", "service_department": "IT", "request_type": "procurement"}
    payload.update(body)
    r = client.post("/api/help-desk/tickets", json=payload, headers=auth(profile))
    assert r.status_code == 201, r.text
    return r.json()

def _decide(client, auth, profile, request_id, decision="approved", **body):
    return client.post(f"/api/approvals/{request_id}/decide",
                       json={"decision": decision, **body}, headers=auth(profile))


def test_procurement_over_http(client, auth, people):
    t = _ticket(client, auth, people["requester"])
    assert t["ticket_number"].startswith("HD-")
    rid = t["approval_request_id"]

    detail = client.get(f"/api/approvals/{rid}", headers=auth(people["it_lead"])).json()
    assert detail["stages"] == ["department_lead", "head_corporate_services", "managing_director"]
    assert detail["can_decide"] is True
    assert [r["status"] for r in detail["records"]] == ["pending"]

    r = _decide(client, auth, people["it_lead"], rid, comments="ok")
    assert r.status_code == 200
    assert r.json() == {"request_id": rid, "stage": "department_lead", "decision": "approved",
                        "status": "pending_approval", "next_stage": "head_corporate_services"}
    assert _decide(client, auth, people["hcs"], rid).status_code == 200
    r = _decide(client, auth, people["md"], rid)
    assert r.json()["status"] == "approved_for_procurement"

    t = client.get(f"/api/help-desk/tickets/{t['id']}", headers=auth(people["requester"])).json()
    assert t["status"] == "approved_for_procurement"
    assert [e["event_type"] for e in t["events"]][-1] == "approval_approved"

def test_decide_error_codes(client, auth, people):
    rid = _ticket(client, auth, people["requester"])["approval_request_id"]

    r = _decide(client, auth, people["fin_lead"], rid)
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"

    r = _decide(client, auth, people["it_lead"], rid, "rejected")
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

    assert _decide(client, auth, people["it_lead"], rid, "rejected", comments="Not needed").status_code == 200
    r = _decide(client, auth, people["super"], rid)
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_state"

    r = _decide(client, auth, people["super"], 9999)
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"

def test_decide_payload_checked_after_authorization(client, auth, people):
    rid = _ticket(client, auth, people["requester"])["approval_request_id"]
    url = f"/api/approvals/{rid}/decide"

    # an outsider is refused before the body is looked at
    for body in ({}, {"comments": 5}, {"decision": ["approved"]}):
        r = client.post(url, json=body, headers=auth(people["outsider"]))
        assert r.status_code == 403, body
        assert r.json()["code"] == "forbidden"

    for body in ({}, {"decision": 1}, {"decision": "approved", "comments": 5},
                 {"decision": "approved", "override_evidence": "yes"}):
        r = client.post(url, json=body, headers=auth(people["it_lead"]))
        assert r.status_code == 400, body
        assert r.json()["code"] == "validation_error"

    r = client.post(url, headers=auth(people["it_lead"]))
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

    # nothing was decided along the way
    detail = client.get(f"/api/approvals/{rid}", headers=auth(people["it_lead"])).json()
    assert [r["status"] for r in detail["records"]] == ["pending"]

def test_ticket_decision_payload_checked_after_authorization(client, auth, people):
    t = _ticket(client, auth, people["requester"])
    url = f"/api/help-desk/tickets/{t['id']}/approvals"
    assert client.post(url, json={}, headers=auth(people["outsider"])).status_code == 403
    r = client.post(url, json={}, headers=auth(people["it_lead"]))
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

def test_malformed_body_is_a_validation_error(client, auth, people):
    r = client.post("/api/help-desk/tickets", json={"service_department": "IT"},
                    headers=auth(people["requester"]))
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "validation_error"
    assert body["detail"].startswith("title")
    assert body["errors"][0]["loc"] == ["body", "title"]

def test_decide_requires_auth(client, people):
    r = client.post("/api/approvals/1/decide", json={"decision": "approved"})
    assert r.status_code == 401
    r = client.post("/api/approvals/1/decide", json={"decision": "approved"},
                    headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401

def test_inactive_profile_is_unauthenticated(client, auth, make_profile):
    gone = make_profile("lead", department="IT", lead_departments=["IT"], is_active=False)
    assert client.get("/api/approvals", headers=auth(gone)).status_code == 401

def test_approval_detail_visibility(client, auth, people):
    rid = _ticket(client, auth, people["requester"])["approval_request_id"]
    assert client.get(f"/api/approvals/{rid}", headers=auth(people["requester"])).status_code == 200
    assert client.get(f"/api/approvals/{rid}", headers=auth(people["outsider"])).status_code == 403
    assert client.get("/api/approvals/9999", headers=auth(people["super"])).status_code == 404

def test_list_approvals_scoping(client, auth, people):
    _ticket(client, auth, people["requester"])
    _ticket(client, auth, people["outsider"], service_department="Finance")
    mine = client.get("/api/approvals", headers=auth(people["requester"])).json()
    assert len(mine) == 1
    everything = client.get("/api/approvals", headers=auth(people["super"])).json()
    assert len(everything) == 2
    leave = client.get("/api/approvals", params={"workflow_type": "leave"},
                       headers=auth(people["super"])).json()
    assert leave == []

def test_queue_endpoint(client, auth, people):
    rid = _ticket(client, auth, people["requester"])["approval_request_id"]
    queue = client.get("/api/approvals/queue", headers=auth(people["it_lead"])).json()
    assert [q["request_id"] for q in queue] == [rid]
    assert queue[0]["due_status"] == "on_track"
    assert client.get("/api/approvals/queue", headers=auth(people["hcs"])).json() == []

def test_sla_policy_endpoints(client, auth, people):
    body = {"workflow_type": "procurement", "stage": "managing_director", "due_hours": 48,
            "reminder_hours_before": 8, "escalate_to_role": "super_admin"}
    assert client.post("/api/approvals/sla/policies", json=body, headers=auth(people["requester"])).status_code == 403
    r = client.post("/api/approvals/sla/policies", json=body, headers=auth(people["hcs"]))
    assert r.status_code == 200
    assert r.json()["due_hours"] == 48

    r = client.post("/api/approvals/sla/policies", json={**body, "due_hours": 0}, headers=auth(people["hcs"]))
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"
    assert r.json()["detail"].startswith("due_hours")

    listed = client.get("/api/approvals/sla/policies", headers=auth(people["requester"])).json()
    assert [(p["workflow_type"], p["stage"]) for p in listed] == [("procurement", "managing_director")]

    r = client.post("/api/approvals/sla/reminders", headers=auth(people["hcs"]))
    assert r.json() == {"reminders_sent": 0, "escalations_sent": 0}
    assert client.post("/api/approvals/sla/reminders", headers=auth(people["it_lead"])).status_code == 403

def test_ticket_endpoints(client, auth, people):
    t = _ticket(client, auth, people["requester"], request_type="support", priority="high")
    assert t["status"] == "new"

    r = client.post(f"/api/help-desk/tickets/{t['id']}/assign", json={"assigned_to": people["colleague"].id},
                    headers=auth(people["it_lead"]))
    assert r.status_code == 200
    assert r.json()["status"] == "assigned"

    r = client.post(f"/api/help-desk/tickets/{t['id']}/pivot", headers=auth(people["colleague"]))
    assert r.status_code == 200
    pivoted = r.json()
    assert pivoted["request_type"] == "procurement"
    assert pivoted["procurement_reason"] == "Procurement required to proceed"

    r = client.post(f"/api/help-desk/tickets/{t['id']}/approvals", json={"decision": "approved"},
                    headers=auth(people["it_lead"]))
    assert r.status_code == 200
    assert r.json()["next_stage"] == "head_corporate_services"

    department = client.get("/api/help-desk/tickets", params={"scope": "department"},
                            headers=auth(people["it_lead"])).json()
    assert [x["id"] for x in department] == [t["id"]]
    assert client.get(f"/api/help-desk/tickets/{t['id']}", headers=auth(people["outsider"])).status_code == 403

def test_ticket_validation_over_http(client, auth, people):
    r = client.post("/api/help-desk/tickets", json={"title": " ", "service_department": "IT"},
                    headers=auth(people["requester"]))
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

def test_leave_over_http(client, auth, people, make_leave_type):
    lt = make_leave_type("sick", required_documents=["medical_certificate"])
    start = date.today() + timedelta(days=10)
    r = client.post("/api/hr/leave/requests", headers=auth(people["requester"]), json={
        "leave_type_id": lt.id,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=1)).isoformat(),
        "reliever_id": people["colleague"].id,
    })
    assert r.status_code == 201, r.text
    leave = r.json()
    assert leave["days_count"] == 2
    assert leave["evidence_complete"] is False
    assert leave["missing_documents"] == ["medical_certificate"]
    rid = leave["approval_request_id"]

    assert _decide(client, auth, people["colleague"], rid).status_code == 200
    assert _decide(client, auth, people["it_lead"], rid).status_code == 200

    r = _decide(client, auth, people["hcs"], rid)
    assert r.status_code == 400
    assert r.json()["missing_documents"] == ["medical_certificate"]

    r = client.post("/api/hr/leave/evidence", headers=auth(people["requester"]), json={
        "leave_request_id": leave["id"], "document_type": "medical_certificate",
        "file_url": "https://files.example.com/mc.pdf",
    })
    assert r.status_code == 201
    ev = r.json()
    r = client.post(f"/api/hr/leave/evidence/{ev['id']}/verify", json={"status": "verified"},
                    headers=auth(people["hcs"]))
    assert r.json()["status"] == "verified"

    r = _decide(client, auth, people["hcs"], rid)
    assert r.status_code == 200
    assert r.json()["status"] == "approved"

    mine = client.get("/api/hr/leave/requests", headers=auth(people["requester"])).json()
    assert mine[0]["status"] == "approved"
    assert mine[0]["evidence_complete"] is True

    balances = client.get("/api/hr/leave/balances", headers=auth(people["requester"])).json()
    assert balances[0]["used_days"] == 2

def test_leave_admin_endpoints(client, auth, people):
    r = client.post("/api/hr/leave/types", json={"code": "Study", "name": "Study", "max_days": 5},
                    headers=auth(people["requester"]))
    assert r.status_code == 403

    r = client.post("/api/hr/leave/types", json={"code": "Study", "name": "Study", "max_days": 5},
                    headers=auth(people["hcs"]))
    assert r.status_code == 201
    lt = r.json()
    assert lt["code"] == "study"

    r = client.post("/api/hr/leave/policies", headers=auth(people["hcs"]),
                    json={"leave_type_id": lt["id"], "required_documents": ["exam_timetable"],
                          "override_allowed": False})
    assert r.status_code == 200
    assert r.json()["override_allowed"] is False

    assert [t["code"] for t in client.get("/api/hr/leave/types", headers=auth(people["requester"])).json()] == ["study"]
    assert len(client.get("/api/hr/leave/policies", headers=auth(people["requester"])).json()) == 1

def test_notification_endpoints(client, auth, people):
    _ticket(client, auth, people["requester"])
    notes = client.get("/api/notifications", headers=auth(people["it_lead"])).json()
    assert len(notes) == 1
    assert notes[0]["type"] == "approval_request"
    assert notes[0]["is_read"] is False

    # someone else's notification is not found
    assert client.post(f"/api/notifications/{notes[0]['id']}/read",
                       headers=auth(people["requester"])).status_code == 404

    r = client.post(f"/api/notifications/{notes[0]['id']}/read", headers=auth(people["it_lead"]))
    assert r.status_code == 200
    assert r.json()["is_read"] is True
    assert client.get("/api/notifications", params={"unread_only": True},
                      headers=auth(people["it_lead"])).json() == []

def test_workflow_endpoints(client, auth, people):
    r = client.get("/api/workflows", headers=auth(people["requester"]))
    assert r.status_code == 200
    assert [s["id"] for s in r.json()["leave"]["stages"]] == ["reliever", "supervisor", "hr"]

    assert client.post("/api/workflows/reload", headers=auth(people["hcs"])).status_code == 403
    r = client.post("/api/workflows/reload", headers=auth(people["super"]))
    assert r.json()["workflows"]["procurement"][-1] == "managing_director"

def test_audit_trail_endpoint(client, auth, people):
    rid = _ticket(client, auth, people["requester"])["approval_request_id"]
    _decide(client, auth, people["it_lead"], rid)
    rows = client.get(f"/api/audit/approval_request/{rid}", headers=auth(people["hcs"])).json()
    assert [row["action"] for row in rows] == ["APPROVAL_DECIDED"]
    assert client.get(f"/api/audit/approval_request/{rid}", headers=auth(people["it_lead"])).status_code == 403

def test_email_webhook_config(client, auth, people):
    r = client.post("/config/email-webhook", json={"webhook_url": "ftp://nope"}, headers=auth(people["hcs"]))
    assert r.status_code == 400
    r = client.post("/config/email-webhook", json={"webhook_url": "https://mail.example.com/hook"},
                    headers=auth(people["hcs"]))
    assert r.status_code == 200
    assert client.get("/config/email-webhook", headers=auth(people["hcs"])).json()["configured"] is True

def test_audit_file_endpoints(client, auth, people):
    rid = _ticket(client, auth, people["requester"])["approval_request_id"]
    _decide(client, auth, people["it_lead"], rid)

    assert client.get("/api/audit-files", headers=auth(people["it_lead"])).status_code == 403
    files = client.get("/api/audit-files", headers=auth(people["hcs"])).json()
    assert files and all(f["name"].endswith(".jsonl") for f in files)

    r = client.get(f"/api/audit-files/{files[0]['name']}", headers=auth(people["hcs"]))
    assert r.status_code == 200
    assert "APPROVAL_DECIDED" in r.text

    assert client.get("/api/audit-files/notes.txt", headers=auth(people["hcs"])).status_code == 400
    assert client.get("/api/audit-files/..secret.jsonl", headers=auth(people["hcs"])).status_code == 400
    assert client.get("/api/audit-files/1999-01-01.jsonl", headers=auth(people["hcs"])).status_code == 404

    assert client.post("/api/audit-files/purge", headers=auth(people["hcs"])).status_code == 403
    r = client.post("/api/audit-files/purge", headers=auth(people["super"]))
    assert r.json() == {"deleted": 0, "older_than_days": 30}
