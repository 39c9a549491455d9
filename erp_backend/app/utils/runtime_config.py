import os
from threading import RLock

_lock = RLock()
_state = {
    # seed from environment on boot; can be overridden at runtime
    "EMAIL_WEBHOOK_URL": os.getenv("EMAIL_WEBHOOK_URL", "").strip(),
}

def set_email_webhook(url: str | None) -> None:
    with _lock:
        _state["EMAIL_WEBHOOK_URL"] = (url or "").strip()

def get_email_webhook() -> str:
    with _lock:
        return _state.get("EMAIL_WEBHOOK_URL", "")
