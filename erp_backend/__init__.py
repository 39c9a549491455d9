# erp_backend/__init__.py
from .main import app  # re-export FastAPI instance

__all__ = ["app"]
