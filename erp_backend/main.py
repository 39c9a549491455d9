from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, FileResponse, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session
from sqlalchemy import text, inspect
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime, timezone, timedelta
import logging, uvicorn

# Import our modules
from erp_backend.app.core.database import get_db, engine, Base
from erp_backend.app.core.errors import WorkflowError, Unauthenticated
from erp_backend.app.core.logging import configure_logging, clear_context
from erp_backend.app.core.security import create_access_token, create_refresh_token, decode_token, ACCESS_TTL_MIN
from erp_backend.app.deps.auth import require_role, get_current_user
from erp_backend.app.metrics import init_metrics_zero
from erp_backend.app.models import AuditLog, Profile
from erp_backend.app.services import events, notify
from erp_backend.app.utils.audit_sink import write_event, AUDIT_DIR
from erp_backend.app.utils.runtime_config import set_email_webhook, get_email_webhook
from erp_backend.app.utils.stages import get_workflows, reload_workflows
from erp_backend.app.api import approvals, help_desk, leave, notifications

configure_logging()
logger = logging.getLogger("erp_backend.main")
logger.info("[db] engine=%s dialect=%s", engine.url.render_as_string(hide_password=True), engine.name)

# FastAPI app
app = FastAPI(
    title="ERP Approvals API",
    description="Sequential multi-stage approvals for procurement and leave",
    version="0.3.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

app.include_router(approvals.router)
app.include_router(help_desk.router)
app.include_router(leave.router)
app.include_router(notifications.router)

# fan out approval events once they are committed
events.subscribe(notify.handle_event)
init_metrics_zero()

@app.on_event("startup")
def on_startup():
    logger.info("[startup] creating tables")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        logger.exception("[startup] error creating tables")
    logger.info("[startup] tables=%s audit_dir=%s", inspect(engine).get_table_names(), AUDIT_DIR)
    logger.info("[startup] workflows=%s", sorted(get_workflows()))

@app.middleware("http")
async def reset_log_context(request: Request, call_next):
    clear_context()
    try:
        return await call_next(request)
    finally:
        clear_context()

# Error mapping
@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error("[error] %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={
        "detail": f"{field}: {msg}" if field else msg,
        "code": "validation_error",
        "errors": jsonable_encoder(errors),
    })

@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "validation_error"})

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("[error] unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": "internal_error"})

@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        # Test database connection
        pending = db.execute(text("SELECT COUNT(*) FROM approval_records WHERE status = 'pending'")).scalar()
        return {
            "status": "healthy",
            "database": "connected",
            "pending_approvals": int(pending or 0),
            "workflows": sorted(get_workflows()),
            "timestamp": datetime.now()
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "timestamp": datetime.now()
        }

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

# Auth
class LoginIn(BaseModel):
    email: str

@app.post("/auth/login")
def auth_login(body: LoginIn, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    profile = db.query(Profile).filter(Profile.email == email).first()
    if profile is None or profile.is_active is False:
        raise Unauthenticated("Unknown or inactive profile")
    access = create_access_token(profile.id, profile.role)
    refresh = create_refresh_token(profile.id, profile.role)
    return {"access_token": access, "refresh_token": refresh, "token_type": "bearer",
            "expires_in": ACCESS_TTL_MIN * 60, "role": profile.role, "profile_id": profile.id}

class RefreshIn(BaseModel):
    refresh_token: str

@app.post("/auth/refresh")
def auth_refresh(body: RefreshIn, db: Session = Depends(get_db)):
    try:
        data = decode_token(body.refresh_token, expected_type="refresh")
    except Exception:
        raise Unauthenticated("Invalid/expired refresh token")
    profile = db.get(Profile, data.get("sub"))
    if profile is None or profile.is_active is False:
        raise Unauthenticated("Unknown or inactive profile")
    new_access = create_access_token(profile.id, profile.role)
    return {"access_token": new_access, "token_type": "bearer", "expires_in": ACCESS_TTL_MIN * 60}

@app.get("/auth/me", response_model=dict)
def auth_me(user: Profile = Depends(get_current_user)):
    return {"id": user.id, "full_name": user.full_name, "email": user.email, "role": user.role,
            "department": user.department, "lead_departments": user.led_departments()}

# Workflow definitions
@app.get("/api/workflows", response_model=dict)
def api_workflows(user=Depends(get_current_user)):
    return {
        wf_type: {
            "subject_type": wf.subject_type,
            "stages": [{"id": s.id, "label": s.label} for s in wf.stages],
            "approved_status": wf.approved_status,
            "rejected_status": wf.rejected_status,
            "override_roles": sorted(wf.override_roles),
            "comments_required": sorted(wf.comments_required),
            "terminal_gate": wf.terminal_gate,
        }
        for wf_type, wf in get_workflows().items()
    }

@app.post("/api/workflows/reload", response_model=dict)
def api_workflows_reload(user=Depends(require_role("super_admin"))):
    wfs = reload_workflows()
    return {"status": "reloaded", "workflows": {k: v.stage_ids for k, v in wfs.items()}}

# Mail webhook
class EmailWebhookIn(BaseModel):
    webhook_url: str

@app.post("/config/email-webhook", response_model=dict)
def api_set_email_webhook(body: EmailWebhookIn, user=Depends(require_role("admin", "super_admin"))):
    url = body.webhook_url.strip()
    if url and not url.startswith(("https://", "http://")):
        raise HTTPException(status_code=400, detail="Invalid e-mail webhook URL")
    set_email_webhook(url)
    return {"saved": True}

@app.get("/config/email-webhook", response_model=dict)
def api_get_email_webhook(user=Depends(require_role("admin", "super_admin"))):
    val = get_email_webhook()
    masked = (val[:20] + "…") if val else None
    return {"configured": bool(val), "webhook_url_preview": masked}

# Audit
class AuditEntry(BaseModel):
    id: int
    action: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    actor: Optional[str]
    details: dict
    created_at: datetime
    class Config:
        from_attributes = True

@app.get("/api/audit/{entity_type}/{entity_id}", response_model=List[AuditEntry])
def get_audit(entity_type: str, entity_id: int, limit: int = 50, db: Session = Depends(get_db),
              user=Depends(require_role("admin", "super_admin"))):
    rows = (
        db.query(AuditLog)
        .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return [AuditEntry.model_validate(r) for r in rows]

@app.get("/api/audit-files", response_model=List[dict])
def list_audit_files(user=Depends(require_role("admin", "super_admin"))):
    AUDIT_DIR.mkdir(parents=True, exist_ok=True)
    files = []
    for p in AUDIT_DIR.glob("*.jsonl"):
        files.append({
            "name": p.name,
            "size_bytes": p.stat().st_size,
            "modified": datetime.fromtimestamp(p.stat().st_mtime, timezone.utc).isoformat(),
        })
    # newest first
    return sorted(files, key=lambda x: x["name"], reverse=True)

@app.get("/api/audit-files/{name}")
def download_audit_file(name: str, user=Depends(require_role("admin", "super_admin"))):
    # forbid path traversal and enforce .jsonl
    if "/" in name or ".." in name or not name.endswith(".jsonl"):
        raise HTTPException(status_code=400, detail="Invalid file name")
    p = AUDIT_DIR / name
    if not p.exists():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(str(p), media_type="application/json", filename=p.name)

@app.post("/api/audit-files/purge", response_model=dict)
def purge_audit_files(older_than_days: int = 30, user=Depends(require_role("super_admin"))):
    AUDIT_DIR.mkdir(parents=True, exist_ok=True)
    cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
    deleted = 0
    for p in AUDIT_DIR.glob("*.jsonl"):
        if datetime.fromtimestamp(p.stat().st_mtime, timezone.utc) < cutoff:
            p.unlink(missing_ok=True)
            deleted += 1
    write_event({"action": "AUDIT_FILES_PURGED", "actor": user.id, "deleted": deleted,
                 "ts": datetime.now(timezone.utc).isoformat()})
    return {"deleted": deleted, "older_than_days": older_than_days}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
