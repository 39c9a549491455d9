import os
import tempfile

# must be set before the app (and its engine) is imported
_TMP = tempfile.mkdtemp(prefix="erp-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["AUDIT_DIR"] = os.path.join(_TMP, "audit")
os.environ["EMAIL_WEBHOOK_URL"] = ""

import pytest
from fastapi.testclient import TestClient

from erp_backend.main import app
from erp_backend.app.core.database import Base, SessionLocal, engine
from erp_backend.app.core.security import create_access_token
from erp_backend.app.models import LeavePolicy, LeaveType, Profile
from erp_backend.app.utils.runtime_config import set_email_webhook


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    set_email_webhook("")
    yield


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_profile(db):
    counter = {"n": 0}

    def _make(role="employee", department=None, lead_departments=None, name=None, is_active=True):
        counter["n"] += 1
        n = counter["n"]
        p = Profile(
            full_name=name or f"{role} {n}",
            email=f"{role}{n}@example.com",
            role=role,
            department=department,
            lead_departments=lead_departments or [],
            is_active=is_active,
        )
        db.add(p)
        db.commit()
        db.refresh(p)
        return p

    return _make


@pytest.fixture
def people(make_profile):
    """The usual cast for procurement and leave scenarios."""
    return {
        "requester": make_profile("employee", department="IT"),
        "colleague": make_profile("employee", department="IT"),
        "it_lead": make_profile("lead", department="IT", lead_departments=["IT"]),
        "fin_lead": make_profile("lead", department="Finance", lead_departments=["Finance"]),
        "hcs": make_profile("admin", department="Admin & HR"),
        "md": make_profile("admin", department="Executive Management"),
        "super": make_profile("super_admin", department="Executive Management"),
        "outsider": make_profile("employee", department="Finance"),
    }


@pytest.fixture
def auth():
    def _headers(profile):
        return {"Authorization": f"Bearer {create_access_token(profile.id, profile.role)}"}
    return _headers


@pytest.fixture
def make_leave_type(db):
    def _make(code="annual", required_documents=None, override_allowed=True, annual_days=20,
              medical_certificate_after_days=0, max_days_per_request=0, with_policy=True):
        lt = LeaveType(code=code, name=code.title(), max_days=annual_days)
        db.add(lt)
        db.commit()
        db.refresh(lt)
        if with_policy:
            db.add(LeavePolicy(
                leave_type_id=lt.id,
                annual_days=annual_days,
                notice_days=0,
                max_days_per_request=max_days_per_request,
                medical_certificate_after_days=medical_certificate_after_days,
                required_documents=list(required_documents or []),
                override_allowed=override_allowed,
                is_active=True,
            ))
            db.commit()
        return lt
    return _make
