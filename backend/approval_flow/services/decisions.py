"""Approve / reject decisions on an expense's current step."""
import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import NoReturn

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from approval_flow.core.config import settings
from approval_flow.db.session import atomic
from approval_flow.models.approval import ApprovalStep, ExpenseApprover
from approval_flow.models.expense import Expense, ExpenseStatus
from approval_flow.services import audit as audit_svc
from approval_flow.services.errors import (
    AlreadyDecidedError,
    NoCurrentStepError,
    UnauthorizedError,
    WorkflowDeadlockError,
    WorkflowValidationError,
)
from approval_flow.services.workflow import advance, get_current_step, lock_expense

logger = logging.getLogger(__name__)


class Decision(str, enum.Enum):
    approve = "approve"
    reject = "reject"


@dataclass(frozen=True)
class DecisionResult:
    expense_id: uuid.UUID
    status: str
    step_order: int
    step_completed: bool


def approve(
    db: Session,
    expense_id: uuid.UUID,
    user_id: uuid.UUID,
    comments: str | None = None,
) -> DecisionResult:
    return record_decision(db, expense_id, user_id, Decision.approve, comments)


def reject(
    db: Session,
    expense_id: uuid.UUID,
    user_id: uuid.UUID,
    comments: str | None,
) -> DecisionResult:
    return record_decision(db, expense_id, user_id, Decision.reject, comments)


def record_decision(
    db: Session,
    expense_id: uuid.UUID,
    user_id: uuid.UUID,
    decision: Decision,
    comments: str | None = None,
) -> DecisionResult:
    """Apply ``decision`` by ``user_id`` to the expense's current step.

    The vote, any resulting step completion and any advance commit together
    under the expense row lock, or not at all.

    Args:
        db: Sync SQLAlchemy session.
        expense_id: Expense being decided.
        user_id: Acting user.
        decision: Decision.approve or Decision.reject.
        comments: Required (non-blank) for rejection, optional for approval.

    Returns:
        DecisionResult with the expense status after the decision.

    Raises:
        WorkflowValidationError: rejection without comments.
        NotFoundError: unknown expense.
        NoCurrentStepError: expense already finalized or without a current step.
        WorkflowDeadlockError: the current step has no eligible approver.
        AlreadyDecidedError: the user already decided on this expense.
        UnauthorizedError: the user may not act on the current step.
        PersistenceError: storage failure (rolled back).
    """
    decision = Decision(decision)
    if decision is Decision.reject and not (comments or "").strip():
        raise WorkflowValidationError("Comments are required for rejection.")

    with atomic(db):
        expense = lock_expense(db, expense_id)
        if expense.status != ExpenseStatus.pending.value:
            raise NoCurrentStepError(
                f"Expense {expense_id} is already {expense.status}; no step awaits a decision."
            )

        step = get_current_step(db, expense.id)
        if step is None:
            raise NoCurrentStepError(f"Expense {expense_id} has no current approval step.")

        voter = _authorize(db, expense, step, user_id)

        if decision is Decision.reject:
            result = _apply_rejection(db, expense, step, voter, user_id, comments)
        else:
            result = _apply_approval(db, expense, step, voter, user_id, comments)

    logger.info(
        "Approval decision: expense=%s step=%s user=%s decision=%s status=%s completed=%s",
        expense_id, result.step_order, user_id, decision.value, result.status, result.step_completed,
    )
    return result


def _authorize(
    db: Session,
    expense: Expense,
    step: ApprovalStep,
    user_id: uuid.UUID,
) -> ExpenseApprover | None:
    """Return the caller's voter row for a shared step (None for sole-approver steps)."""
    if step.is_shared:
        pool = db.execute(
            select(ExpenseApprover)
            .where(ExpenseApprover.step_id == step.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        if not pool:
            _raise_deadlock(expense, step)
        voter = next((v for v in pool if v.approver_id == user_id), None)
        if voter is None:
            _raise_not_eligible(db, expense, step, user_id)
        if voter.has_voted:
            raise AlreadyDecidedError(
                f"User {user_id} already voted on step {step.step_order} of expense {expense.id}."
            )
        return voter

    if step.approver_id is None:
        _raise_deadlock(expense, step)
    if step.approver_id != user_id:
        _raise_not_eligible(db, expense, step, user_id)
    return None


def _raise_deadlock(expense: Expense, step: ApprovalStep) -> NoReturn:
    logger.error(
        "Workflow deadlock: expense=%s step=%s (%s/%s) has no eligible approver",
        expense.id, step.step_order, step.kind, step.role_label,
    )
    raise WorkflowDeadlockError(
        f"Step {step.step_order} of expense {expense.id} has no eligible approver "
        f"for role {step.role_label}; an administrator must intervene."
    )


def _raise_not_eligible(
    db: Session,
    expense: Expense,
    step: ApprovalStep,
    user_id: uuid.UUID,
) -> NoReturn:
    """Distinguish a re-submitted decision from a plain authorization failure."""
    decided_steps = db.execute(
        select(func.count(ApprovalStep.id)).where(
            ApprovalStep.expense_id == expense.id,
            ApprovalStep.approver_id == user_id,
            or_(ApprovalStep.approved_at.is_not(None), ApprovalStep.rejected_at.is_not(None)),
        )
    ).scalar_one()
    decided_votes = db.execute(
        select(func.count(ExpenseApprover.id)).where(
            ExpenseApprover.expense_id == expense.id,
            ExpenseApprover.approver_id == user_id,
            or_(ExpenseApprover.approved_at.is_not(None), ExpenseApprover.rejected_at.is_not(None)),
        )
    ).scalar_one()
    if decided_steps or decided_votes:
        raise AlreadyDecidedError(
            f"User {user_id} already decided on expense {expense.id}; "
            f"step {step.step_order} awaits another approver."
        )
    raise UnauthorizedError(
        f"User {user_id} is not an approver for the current step of expense {expense.id}."
    )


def _apply_rejection(
    db: Session,
    expense: Expense,
    step: ApprovalStep,
    voter: ExpenseApprover | None,
    user_id: uuid.UUID,
    comments: str | None,
) -> DecisionResult:
    now = datetime.now(timezone.utc)

    step.rejected_at = now
    step.comments = comments
    step.is_current = False
    if voter is not None:
        voter.rejected_at = now
    expense.status = ExpenseStatus.rejected.value
    db.flush()

    audit_svc.log(
        db=db,
        action="expense_rejected",
        entity_type="expense",
        entity_id=expense.id,
        actor_id=user_id,
        before={"status": ExpenseStatus.pending.value, "step_order": step.step_order},
        after={"status": expense.status, "step_order": step.step_order},
        notes=comments,
    )
    return DecisionResult(
        expense_id=expense.id,
        status=expense.status,
        step_order=step.step_order,
        step_completed=False,
    )


def _apply_approval(
    db: Session,
    expense: Expense,
    step: ApprovalStep,
    voter: ExpenseApprover | None,
    user_id: uuid.UUID,
    comments: str | None,
) -> DecisionResult:
    now = datetime.now(timezone.utc)

    if voter is None:
        step.approved_at = now
        step.comments = comments or ""
        db.flush()
    else:
        voter.approved_at = now
        db.flush()

        total, approved = _tally(db, step.id)
        audit_svc.log(
            db=db,
            action="approval_vote_recorded",
            entity_type="approval_step",
            entity_id=step.id,
            actor_id=user_id,
            after={
                "expense_id": str(expense.id),
                "approved_count": approved,
                "total_approvers": total,
                "threshold": step.threshold,
            },
            notes=comments,
        )
        if not threshold_met(approved, total, step.threshold):
            logger.info(
                "Vote recorded: expense=%s step=%s %d/%d approved (threshold %s%%), waiting",
                expense.id, step.step_order, approved, total, step.threshold,
            )
            return DecisionResult(
                expense_id=expense.id,
                status=expense.status,
                step_order=step.step_order,
                step_completed=False,
            )
        step.approved_at = now
        step.comments = comments or settings.SHARED_STEP_DEFAULT_COMMENT
        db.flush()

    audit_svc.log(
        db=db,
        action="approval_step_completed",
        entity_type="approval_step",
        entity_id=step.id,
        actor_id=user_id,
        after={"expense_id": str(expense.id), "step_order": step.step_order, "kind": step.kind},
        notes=step.comments or None,
    )
    advance(db, expense, step.step_order)
    return DecisionResult(
        expense_id=expense.id,
        status=expense.status,
        step_order=step.step_order,
        step_completed=True,
    )


def _tally(db: Session, step_id: uuid.UUID) -> tuple[int, int]:
    """(total voters, approved voters) for a shared step."""
    total, approved = db.execute(
        select(
            func.count(ExpenseApprover.id),
            func.count(ExpenseApprover.approved_at),
        ).where(ExpenseApprover.step_id == step_id)
    ).one()
    return int(total), int(approved)


def threshold_met(approved: int, total: int, threshold: int | None) -> bool:
    """approved / total * 100 >= threshold, in integers; an empty pool never passes."""
    if total <= 0 or threshold is None:
        return False
    return approved * 100 >= threshold * total
