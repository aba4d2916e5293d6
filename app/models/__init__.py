from app.models.account import Account
from app.models.audit_log import AuditLog
from app.models.loan_application import LoanApplication
from app.models.loan_product import LoanProduct

__all__ = [
    "Account",
    "AuditLog",
    "LoanApplication",
    "LoanProduct",
]
