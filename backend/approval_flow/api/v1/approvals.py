"""Approval workflow API endpoints (JWT required).

  GET  /approvals/pending                steps awaiting the current user
  GET  /approvals/history                decisions the current user made
  GET  /approvals/company/pending        company-wide current steps (ADMIN/MANAGER/CFO)
  POST /approvals/{expense_id}/approve
  POST /approvals/{expense_id}/reject
"""
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from approval_flow.core.config import settings
from approval_flow.core.deps import get_current_user
from approval_flow.core.limiter import limiter
from approval_flow.db.session import get_db
from approval_flow.models.user import User
from approval_flow.schemas.approval import (
    ApprovalDecisionRequest,
    ApprovalDecisionResponse,
    ApprovalHistoryListResponse,
    CompanyPendingListResponse,
    PendingApprovalListResponse,
)
from approval_flow.services import approval_views, decisions

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Read views ───

@router.get(
    "/pending",
    response_model=PendingApprovalListResponse,
    summary="List approval steps awaiting the current user",
)
def list_my_pending(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    items = approval_views.list_pending_for_user(db, current_user.id)
    return PendingApprovalListResponse(items=items, total=len(items))


@router.get(
    "/history",
    response_model=ApprovalHistoryListResponse,
    summary="List the current user's past approval decisions",
)
def list_my_history(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    items = approval_views.list_history_for_user(db, current_user.id)
    return ApprovalHistoryListResponse(items=items, total=len(items))


@router.get(
    "/company/pending",
    response_model=CompanyPendingListResponse,
    summary="List every pending expense's current step in the caller's company",
)
def list_company_pending(
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    items = approval_views.list_company_pending(db, current_user.company_id, current_user.role)
    return CompanyPendingListResponse(items=items, total=len(items))


# ─── Decisions ───

@router.post(
    "/{expense_id}/approve",
    response_model=ApprovalDecisionResponse,
    summary="Approve the current step of an expense",
)
@limiter.limit(settings.DECISION_RATE_LIMIT)
def approve_expense(
    request: Request,
    expense_id: uuid.UUID,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    body: ApprovalDecisionRequest | None = None,
):
    comments = body.comments if body else None
    result = decisions.approve(db, expense_id, current_user.id, comments)
    return ApprovalDecisionResponse(
        expense_id=result.expense_id,
        status=result.status,
        step_order=result.step_order,
        step_completed=result.step_completed,
    )


@router.post(
    "/{expense_id}/reject",
    response_model=ApprovalDecisionResponse,
    summary="Reject an expense at its current step (comments required)",
)
@limiter.limit(settings.DECISION_RATE_LIMIT)
def reject_expense(
    request: Request,
    expense_id: uuid.UUID,
    body: ApprovalDecisionRequest,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    result = decisions.reject(db, expense_id, current_user.id, body.comments)
    return ApprovalDecisionResponse(
        expense_id=result.expense_id,
        status=result.status,
        step_order=result.step_order,
        step_completed=result.step_completed,
    )
