from .profile import Profile, Role
from .approval import ApprovalRequest, ApprovalRecord, RecordStatus
from .audit import AuditLog
from .ticket import HelpDeskTicket, HelpDeskEvent, TicketStatus
from .leave import LeaveType, LeavePolicy, LeaveRequest, LeaveEvidence, LeaveBalance
from .notification import Notification
from .sla import ApprovalSlaPolicy
