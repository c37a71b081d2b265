"""Pydantic schemas for approval workflow API endpoints and read models."""
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ─── Expense summary embedded in every view ───

class ExpenseSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    description: str
    amount: Decimal
    currency: str
    converted_amount: Decimal | None
    category: str
    expense_date: date
    status: str


# ─── Pending-for-user views ───

class _StepView(BaseModel):
    step_id: uuid.UUID
    expense: ExpenseSummary
    submitter_name: str
    step_order: int
    rule_kind: str
    role_label: str
    created_at: datetime


class SequentialPendingItem(_StepView):
    """A step resolved to one designated approver (manager gate or specific rule)."""

    approval_type: Literal["sequential"] = "sequential"


class SharedPendingItem(_StepView):
    """A percentage/hybrid step voted on by a pool of approvers."""

    approval_type: Literal["shared"] = "shared"
    threshold: int | None
    total_approvers: int
    approved_count: int


PendingApprovalItem = Annotated[
    Union[SequentialPendingItem, SharedPendingItem],
    Field(discriminator="approval_type"),
]


# ─── History-for-user view ───

class ApprovalHistoryItem(_StepView):
    approval_type: Literal["sequential", "shared"]
    action_taken: Literal["approved", "rejected"]
    decided_at: datetime
    comments: str | None = None


# ─── Company-pending views ───

class SequentialCompanyPendingItem(SequentialPendingItem):
    current_approver: str
    is_manager_step: bool
    is_deadlocked: bool


class SharedCompanyPendingItem(SharedPendingItem):
    current_approver: str
    is_manager_step: bool = False
    is_deadlocked: bool


CompanyPendingItem = Annotated[
    Union[SequentialCompanyPendingItem, SharedCompanyPendingItem],
    Field(discriminator="approval_type"),
]


# ─── Decision request / response ───

class ApprovalDecisionRequest(BaseModel):
    comments: str | None = None


class ApprovalDecisionResponse(BaseModel):
    expense_id: uuid.UUID
    status: str
    step_order: int
    step_completed: bool


# ─── List responses ───

class PendingApprovalListResponse(BaseModel):
    items: list[PendingApprovalItem]
    total: int


class ApprovalHistoryListResponse(BaseModel):
    items: list[ApprovalHistoryItem]
    total: int


class CompanyPendingListResponse(BaseModel):
    items: list[CompanyPendingItem]
    total: int


# ─── Step trail ───

class ApprovalStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    expense_id: uuid.UUID
    step_order: int
    kind: str
    role_label: str
    threshold: int | None
    approver_id: uuid.UUID | None
    is_current: bool
    approved_at: datetime | None
    rejected_at: datetime | None
    comments: str | None
