# models package for SQLModel models
from .loan import Loan, LoanStatus, LOAN_TRANSITIONS, ACTIVE_LOAN_STATUSES  # noqa: F401  (import for metadata registration)
from .fine import Fine, FineStatus, FineType, FINE_TRANSITIONS  # noqa: F401
