from app.models.user import User, UserRole
from app.models.transaction import LedgerTransaction, TransactionKind
from app.models.rollback import TransactionRollback
from app.models.audit_log import AuditEvent, AuditLog

__all__ = [
    "User",
    "UserRole",
    "LedgerTransaction",
    "TransactionKind",
    "TransactionRollback",
    "AuditEvent",
    "AuditLog",
]
