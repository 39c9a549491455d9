"""
Domain events emitted by the approval state machine.

Events are published only after the decision transaction has committed.
Subscribers run in registration order; a failing subscriber is logged and
skipped, it never affects the caller or the other subscribers.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowEvent:
    request_id: int
    workflow_type: str
    stage: str
    actor_id: Optional[str]
    comments: Optional[str] = None


@dataclass(frozen=True)
class RequestStarted(WorkflowEvent):
    """A chain was opened; ``stage`` is the first pending stage."""


@dataclass(frozen=True)
class StageAdvanced(WorkflowEvent):
    """``stage`` was approved and ``next_stage`` is now pending."""
    next_stage: Optional[str] = None


@dataclass(frozen=True)
class RequestRejected(WorkflowEvent):
    """``stage`` rejected the request; it is terminal."""


@dataclass(frozen=True)
class RequestApproved(WorkflowEvent):
    """``stage`` was the last stage and approved it; the request is terminal."""
    evidence_override: bool = False


Subscriber = Callable[[Session, WorkflowEvent], None]

_subscribers: List[Subscriber] = []

def subscribe(fn: Subscriber) -> Subscriber:
    if fn not in _subscribers:
        _subscribers.append(fn)
    return fn

def unsubscribe(fn: Subscriber) -> None:
    if fn in _subscribers:
        _subscribers.remove(fn)

def publish(db: Session, events: Iterable[WorkflowEvent]) -> None:
    for event in events:
        for fn in list(_subscribers):
            try:
                fn(db, event)
            except Exception:
                logger.exception("[events] subscriber %s failed for %s(request=%s)",
                                 getattr(fn, "__name__", fn), type(event).__name__, event.request_id)
