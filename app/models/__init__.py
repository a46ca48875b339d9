from app.models.audit_log import AuditLog
from app.models.borrower import Borrower
from app.models.loan import Loan
from app.models.org import Org
from app.models.user import User

__all__ = [
    "AuditLog",
    "Borrower",
    "Loan",
    "Org",
    "User",
]
