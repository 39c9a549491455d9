from fastapi import Depends, Header
from sqlalchemy.orm import Session
from typing import Callable

from erp_backend.app.core.database import get_db
from erp_backend.app.core.errors import Forbidden, Unauthenticated
from erp_backend.app.core.logging import bind_context
from erp_backend.app.core.security import decode_token
from erp_backend.app.models.profile import Profile

def get_current_user(authorization: str | None = Header(default=None),
                     db: Session = Depends(get_db)) -> Profile:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthenticated("Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        data = decode_token(token, expected_type="access")
    except Exception:
        raise Unauthenticated("Invalid/expired token")
    profile = db.get(Profile, data.get("sub"))
    if profile is None or profile.is_active is False:
        raise Unauthenticated("Unknown or inactive profile")
    bind_context(actor_id=profile.id)
    return profile

def require_role(*allowed: str) -> Callable:
    def checker(user: Profile = Depends(get_current_user)) -> Profile:
        if allowed and user.role not in allowed:
            raise Forbidden("Forbidden")
        return user
    return checker
