"""Terminal-stage gates. A workflow names its gate in its definition."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from erp_backend.app.core.errors import ValidationError
from erp_backend.app.models.approval import ApprovalRecord, ApprovalRequest
from erp_backend.app.models.leave import LeaveEvidence, LeavePolicy, LeaveRequest
from erp_backend.app.models.profile import Profile


@dataclass
class GateOutcome:
    overridden: bool = False
    missing: List[str] = field(default_factory=list)


class TerminalGate(Protocol):
    def check(self, db: Session, request: ApprovalRequest, record: ApprovalRecord,
              actor: Profile, comments: Optional[str], override: bool) -> GateOutcome:
        ...


def evidence_status(db: Session, leave_request_id: int, required: List[str]) -> Tuple[bool, List[str]]:
    """(complete, missing document types) for a leave request."""
    if not required:
        return True, []
    rows = (
        db.query(LeaveEvidence.document_type)
        .filter(LeaveEvidence.leave_request_id == leave_request_id,
                LeaveEvidence.status == "verified")
        .all()
    )
    verified = {r[0] for r in rows}
    missing = [doc for doc in required if doc not in verified]
    return not missing, missing


class EvidenceGate:
    """
    Blocks final approval of a leave request until every required document is
    verified, unless the approver overrides with a reason and the leave policy
    allows overrides.
    """

    def check(self, db: Session, request: ApprovalRequest, record: ApprovalRecord,
              actor: Profile, comments: Optional[str], override: bool) -> GateOutcome:
        required = list((request.context or {}).get("required_documents") or [])
        complete, missing = evidence_status(db, request.subject_id, required)
        if complete:
            return GateOutcome()

        if not override:
            raise ValidationError(
                f"Required evidence is not verified: {', '.join(missing)}",
                missing_documents=missing,
            )

        if not self._override_allowed(db, request):
            raise ValidationError(
                "Evidence override is not allowed for this leave type",
                missing_documents=missing,
            )
        if not (comments or "").strip():
            raise ValidationError(
                "Override reason is required when evidence is incomplete",
                missing_documents=missing,
            )
        return GateOutcome(overridden=True, missing=missing)

    @staticmethod
    def _override_allowed(db: Session, request: ApprovalRequest) -> bool:
        leave = db.get(LeaveRequest, request.subject_id) if request.subject_id else None
        if leave is None:
            return False
        policy = (
            db.query(LeavePolicy)
            .filter(LeavePolicy.leave_type_id == leave.leave_type_id, LeavePolicy.is_active == True)  # noqa: E712
            .first()
        )
        # no governance policy configured: overrides are allowed
        return True if policy is None else bool(policy.override_allowed)


GATES: Dict[str, TerminalGate] = {
    "evidence": EvidenceGate(),
}

def get_gate(name: Optional[str]) -> Optional[TerminalGate]:
    if not name:
        return None
    gate = GATES.get(name)
    if gate is None:
        raise KeyError(f"unknown terminal gate '{name}'")
    return gate
