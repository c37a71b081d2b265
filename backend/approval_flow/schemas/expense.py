"""Pydantic schemas for expense submission endpoints."""
import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExpenseCreate(BaseModel):
    description: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    converted_amount: Decimal | None = None
    category: str = Field(min_length=1, max_length=100)
    expense_date: date

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()


class ExpenseUpdate(BaseModel):
    description: str | None = Field(default=None, min_length=1)
    amount: Decimal | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    converted_amount: Decimal | None = None
    category: str | None = Field(default=None, min_length=1, max_length=100)
    expense_date: date | None = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value

    @field_validator("description", "amount", "currency", "category", "expense_date")
    @classmethod
    def not_null(cls, value):
        # Omit a field to leave it unchanged; these columns are NOT NULL.
        if value is None:
            raise ValueError("may not be null")
        return value


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    submitter_id: uuid.UUID
    description: str
    amount: Decimal
    currency: str
    converted_amount: Decimal | None
    category: str
    expense_date: date
    status: str
    approved_at: datetime | None
    created_at: datetime


class ExpenseListResponse(BaseModel):
    items: list[ExpenseOut]
    total: int
