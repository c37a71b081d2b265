"""Read-only approval projections.

Sole-approver steps and shared (pool) steps are queried separately, one
statement per kind, and merged here into typed items.
"""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, aliased

from approval_flow.core.config import settings
from approval_flow.models.approval import SOLE_APPROVER_KINDS, ApprovalStep, ExpenseApprover, StepKind
from approval_flow.models.expense import Expense, ExpenseStatus
from approval_flow.models.user import User, parse_role
from approval_flow.schemas.approval import (
    ApprovalHistoryItem,
    ExpenseSummary,
    SequentialCompanyPendingItem,
    SequentialPendingItem,
    SharedCompanyPendingItem,
    SharedPendingItem,
)
from approval_flow.services.errors import ForbiddenError

logger = logging.getLogger(__name__)

MULTIPLE_APPROVERS = "Multiple Approvers"
UNASSIGNED = "Unassigned"

Submitter = aliased(User, name="submitter")


def _aware(value: datetime | None) -> datetime:
    """Comparable UTC datetime (SQLite hands back naive values)."""
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _step_fields(step: ApprovalStep, expense: Expense, submitter_name: str) -> dict:
    return {
        "step_id": step.id,
        "expense": ExpenseSummary.model_validate(expense),
        "submitter_name": submitter_name,
        "step_order": step.step_order,
        "rule_kind": step.kind,
        "role_label": step.role_label,
        "created_at": step.created_at,
    }


def _pool_counts(db: Session, step_ids: list[uuid.UUID]) -> dict[uuid.UUID, tuple[int, int]]:
    """step_id -> (total voters, approved voters)."""
    if not step_ids:
        return {}
    rows = db.execute(
        select(
            ExpenseApprover.step_id,
            func.count(ExpenseApprover.id),
            func.count(ExpenseApprover.approved_at),
        )
        .where(ExpenseApprover.step_id.in_(step_ids))
        .group_by(ExpenseApprover.step_id)
    ).all()
    return {step_id: (int(total), int(approved)) for step_id, total, approved in rows}


# ─── Pending for user ───

def list_pending_for_user(
    db: Session,
    user_id: uuid.UUID,
) -> list[SequentialPendingItem | SharedPendingItem]:
    """Current, unresolved steps of pending expenses that ``user_id`` can act on."""
    sequential_rows = db.execute(
        select(ApprovalStep, Expense, Submitter.name)
        .join(Expense, ApprovalStep.expense_id == Expense.id)
        .join(Submitter, Expense.submitter_id == Submitter.id)
        .where(
            ApprovalStep.approver_id == user_id,
            ApprovalStep.is_current.is_(True),
            ApprovalStep.approved_at.is_(None),
            ApprovalStep.rejected_at.is_(None),
            Expense.status == ExpenseStatus.pending.value,
        )
    ).all()

    shared_rows = db.execute(
        select(ApprovalStep, Expense, Submitter.name)
        .join(ExpenseApprover, ExpenseApprover.step_id == ApprovalStep.id)
        .join(Expense, ApprovalStep.expense_id == Expense.id)
        .join(Submitter, Expense.submitter_id == Submitter.id)
        .where(
            ExpenseApprover.approver_id == user_id,
            ExpenseApprover.approved_at.is_(None),
            ExpenseApprover.rejected_at.is_(None),
            ApprovalStep.is_current.is_(True),
            ApprovalStep.approved_at.is_(None),
            Expense.status == ExpenseStatus.pending.value,
        )
    ).all()

    items: dict[uuid.UUID, SequentialPendingItem | SharedPendingItem] = {}
    for step, expense, submitter_name in sequential_rows:
        items[step.id] = SequentialPendingItem(**_step_fields(step, expense, submitter_name))

    counts = _pool_counts(db, [step.id for step, _, _ in shared_rows])
    for step, expense, submitter_name in shared_rows:
        if step.id in items:
            continue
        total, approved = counts.get(step.id, (0, 0))
        items[step.id] = SharedPendingItem(
            **_step_fields(step, expense, submitter_name),
            threshold=step.threshold,
            total_approvers=total,
            approved_count=approved,
        )

    return sorted(items.values(), key=lambda item: _aware(item.created_at))


# ─── History for user ───

def list_history_for_user(db: Session, user_id: uuid.UUID) -> list[ApprovalHistoryItem]:
    """Every decision ``user_id`` made, most recent first, across all expense states."""
    sequential_rows = db.execute(
        select(ApprovalStep, Expense, Submitter.name)
        .join(Expense, ApprovalStep.expense_id == Expense.id)
        .join(Submitter, Expense.submitter_id == Submitter.id)
        .where(
            ApprovalStep.approver_id == user_id,
            ApprovalStep.kind.in_(SOLE_APPROVER_KINDS),
            or_(ApprovalStep.approved_at.is_not(None), ApprovalStep.rejected_at.is_not(None)),
        )
    ).all()

    shared_rows = db.execute(
        select(ExpenseApprover, ApprovalStep, Expense, Submitter.name)
        .join(ApprovalStep, ExpenseApprover.step_id == ApprovalStep.id)
        .join(Expense, ExpenseApprover.expense_id == Expense.id)
        .join(Submitter, Expense.submitter_id == Submitter.id)
        .where(
            ExpenseApprover.approver_id == user_id,
            or_(ExpenseApprover.approved_at.is_not(None), ExpenseApprover.rejected_at.is_not(None)),
        )
    ).all()

    items: list[ApprovalHistoryItem] = []
    for step, expense, submitter_name in sequential_rows:
        approved = step.approved_at is not None
        items.append(ApprovalHistoryItem(
            **_step_fields(step, expense, submitter_name),
            approval_type="sequential",
            action_taken="approved" if approved else "rejected",
            decided_at=step.approved_at if approved else step.rejected_at,
            comments=step.comments,
        ))

    for voter, step, expense, submitter_name in shared_rows:
        approved = voter.approved_at is not None
        items.append(ApprovalHistoryItem(
            **_step_fields(step, expense, submitter_name),
            approval_type="shared",
            action_taken="approved" if approved else "rejected",
            decided_at=voter.approved_at if approved else voter.rejected_at,
            # Only a rejecting voter's reason is stored on the step.
            comments=None if approved else step.comments,
        ))

    items.sort(key=lambda item: _aware(item.decided_at), reverse=True)
    return items


# ─── Company pending ───

def list_company_pending(
    db: Session,
    company_id: uuid.UUID,
    caller_role: str,
) -> list[SequentialCompanyPendingItem | SharedCompanyPendingItem]:
    """Current steps of every pending expense in the company, newest expense first.

    Raises:
        WorkflowValidationError: ``caller_role`` is not a known role.
        ForbiddenError: ``caller_role`` is not admin/manager-class.
    """
    role = parse_role(caller_role)
    if role.value not in settings.privileged_roles_list:
        raise ForbiddenError(
            f"Role '{role.value}' may not view company-wide pending approvals."
        )

    rows = db.execute(
        select(ApprovalStep, Expense, Submitter.name)
        .join(Expense, ApprovalStep.expense_id == Expense.id)
        .join(Submitter, Expense.submitter_id == Submitter.id)
        .where(
            Expense.company_id == company_id,
            Expense.status == ExpenseStatus.pending.value,
            ApprovalStep.is_current.is_(True),
        )
        .order_by(Expense.created_at.desc())
    ).all()

    approver_ids = {step.approver_id for step, _, _ in rows if step.approver_id is not None}
    approver_names: dict[uuid.UUID, str] = {}
    if approver_ids:
        approver_names = dict(
            db.execute(select(User.id, User.name).where(User.id.in_(approver_ids))).all()
        )
    counts = _pool_counts(db, [step.id for step, _, _ in rows if step.is_shared])

    items: list[SequentialCompanyPendingItem | SharedCompanyPendingItem] = []
    for step, expense, submitter_name in rows:
        fields = _step_fields(step, expense, submitter_name)
        if step.is_shared:
            total, approved = counts.get(step.id, (0, 0))
            items.append(SharedCompanyPendingItem(
                **fields,
                threshold=step.threshold,
                total_approvers=total,
                approved_count=approved,
                current_approver=MULTIPLE_APPROVERS if total else UNASSIGNED,
                is_deadlocked=total == 0,
            ))
        else:
            name = approver_names.get(step.approver_id) if step.approver_id else None
            items.append(SequentialCompanyPendingItem(
                **fields,
                current_approver=name or UNASSIGNED,
                is_manager_step=step.kind == StepKind.manager.value,
                is_deadlocked=step.approver_id is None,
            ))

    deadlocked = sum(1 for item in items if item.is_deadlocked)
    if deadlocked:
        logger.warning(
            "list_company_pending: company=%s has %d stalled expense(s) with no eligible approver",
            company_id, deadlocked,
        )
    return items
