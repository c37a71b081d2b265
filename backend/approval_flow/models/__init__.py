from approval_flow.models.company import Company
from approval_flow.models.user import User, Role, ROLES
from approval_flow.models.expense import Expense, ExpenseStatus
from approval_flow.models.approval_rule import ApprovalRule, RuleKind
from approval_flow.models.approval import ApprovalStep, ExpenseApprover, StepKind
from approval_flow.models.audit import AuditLog

__all__ = [
    "Company",
    "User", "Role", "ROLES",
    "Expense", "ExpenseStatus",
    "ApprovalRule", "RuleKind",
    "ApprovalStep", "ExpenseApprover", "StepKind",
    "AuditLog",
]
