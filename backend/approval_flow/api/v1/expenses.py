"""Expense submission endpoints.

Submitting an expense materializes its approval workflow in the same
transaction; the submitter may edit or delete it while it is pending or
rejected.
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from approval_flow.core.deps import get_current_user
from approval_flow.db.session import get_db
from approval_flow.models.user import User
from approval_flow.schemas.approval import ApprovalStepOut
from approval_flow.schemas.expense import (
    ExpenseCreate,
    ExpenseListResponse,
    ExpenseOut,
    ExpenseUpdate,
)
from approval_flow.services import expenses as expense_svc

router = APIRouter()


@router.post(
    "",
    response_model=ExpenseOut,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an expense and start its approval workflow",
)
def create_expense(
    body: ExpenseCreate,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    expense = expense_svc.create_expense(db, current_user, body)
    return ExpenseOut.model_validate(expense)


@router.get(
    "",
    response_model=ExpenseListResponse,
    summary="List the current user's expenses",
)
def list_my_expenses(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    status_filter: str | None = Query(None, alias="status", description="pending, approved or rejected"),
):
    rows = expense_svc.list_expenses_for_submitter(db, current_user.id, status_filter)
    return ExpenseListResponse(
        items=[ExpenseOut.model_validate(e) for e in rows],
        total=len(rows),
    )


@router.put(
    "/{expense_id}",
    response_model=ExpenseOut,
    summary="Edit an expense while it is pending or rejected",
)
def update_expense(
    expense_id: uuid.UUID,
    body: ExpenseUpdate,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    expense = expense_svc.update_expense(db, expense_id, current_user.id, body)
    return ExpenseOut.model_validate(expense)


@router.delete(
    "/{expense_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an expense while it is pending or rejected",
)
def delete_expense(
    expense_id: uuid.UUID,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    expense_svc.delete_expense(db, expense_id, current_user.id)


@router.get(
    "/{expense_id}/steps",
    response_model=list[ApprovalStepOut],
    summary="Ordered approval step trail of an expense",
)
def get_expense_steps(
    expense_id: uuid.UUID,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    steps = expense_svc.get_expense_steps(db, expense_id, current_user)
    return [ApprovalStepOut.model_validate(s) for s in steps]
