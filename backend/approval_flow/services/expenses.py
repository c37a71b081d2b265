"""Expense submission, submitter edits and deletion, and the step trail."""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_flow.db.session import atomic
from approval_flow.models.approval import ApprovalStep
from approval_flow.models.expense import EDITABLE_STATUSES, Expense, ExpenseStatus
from approval_flow.models.user import User
from approval_flow.schemas.expense import ExpenseCreate, ExpenseUpdate
from approval_flow.services import audit as audit_svc
from approval_flow.services.errors import NotFoundError, WorkflowValidationError
from approval_flow.services.workflow import lock_expense, materialize_steps

logger = logging.getLogger(__name__)


def create_expense(db: Session, submitter: User, body: ExpenseCreate) -> Expense:
    """Insert an expense and its approval workflow in one transaction.

    A failure while materializing steps leaves no expense behind, so a
    pending expense always has a current step.
    """
    with atomic(db):
        data = body.model_dump()
        if data.get("converted_amount") is None:
            data["converted_amount"] = data["amount"]
        expense = Expense(
            **data,
            company_id=submitter.company_id,
            submitter_id=submitter.id,
            status=ExpenseStatus.pending.value,
        )
        db.add(expense)
        db.flush()
        steps = materialize_steps(db, expense)

    logger.info(
        "create_expense: expense=%s submitter=%s steps=%d status=%s",
        expense.id, submitter.id, len(steps), expense.status,
    )
    return expense


def update_expense(
    db: Session,
    expense_id: uuid.UUID,
    submitter_id: uuid.UUID,
    body: ExpenseUpdate,
) -> Expense:
    """Apply a submitter's edit; only pending or rejected expenses may change.

    Edits never touch the approval steps already generated for the expense.
    """
    with atomic(db):
        expense = lock_expense(db, expense_id)
        if expense.submitter_id != submitter_id:
            raise NotFoundError(f"Expense {expense_id} not found.")
        if expense.status not in EDITABLE_STATUSES:
            raise WorkflowValidationError(
                f"Expense {expense_id} is {expense.status} and can no longer be edited."
            )
        for field, value in body.model_dump(exclude_unset=True).items():
            setattr(expense, field, value)
    return expense


def delete_expense(db: Session, expense_id: uuid.UUID, submitter_id: uuid.UUID) -> None:
    """Remove a pending or rejected expense together with its steps and votes."""
    with atomic(db):
        expense = lock_expense(db, expense_id)
        if expense.submitter_id != submitter_id:
            raise NotFoundError(f"Expense {expense_id} not found.")
        if expense.status not in EDITABLE_STATUSES:
            raise WorkflowValidationError(
                f"Expense {expense_id} is {expense.status} and can no longer be deleted."
            )
        audit_svc.log(
            db=db,
            action="expense_deleted",
            entity_type="expense",
            entity_id=expense.id,
            actor_id=submitter_id,
            before={
                "status": expense.status,
                "amount": expense.amount,
                "currency": expense.currency,
                "description": expense.description,
            },
        )
        db.delete(expense)
    logger.info("delete_expense: expense=%s submitter=%s", expense_id, submitter_id)


def list_expenses_for_submitter(
    db: Session,
    submitter_id: uuid.UUID,
    status: str | None = None,
) -> list[Expense]:
    stmt = select(Expense).where(Expense.submitter_id == submitter_id)
    if status:
        try:
            status = ExpenseStatus(status).value
        except ValueError:
            raise WorkflowValidationError(f"Unknown expense status '{status}'.") from None
        stmt = stmt.where(Expense.status == status)
    stmt = stmt.order_by(Expense.created_at.desc())
    return list(db.execute(stmt).scalars().all())


def get_expense_steps(db: Session, expense_id: uuid.UUID, viewer: User) -> list[ApprovalStep]:
    """Ordered step trail of an expense, visible within the expense's company."""
    expense = db.get(Expense, expense_id)
    if expense is None or expense.company_id != viewer.company_id:
        raise NotFoundError(f"Expense {expense_id} not found.")
    return list(
        db.execute(
            select(ApprovalStep)
            .where(ApprovalStep.expense_id == expense_id)
            .order_by(ApprovalStep.step_order)
        ).scalars().all()
    )
