import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_flow.db.base import Base, TimestampMixin, UUIDMixin


class ExpenseStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


EDITABLE_STATUSES = (ExpenseStatus.pending.value, ExpenseStatus.rejected.value)


class Expense(Base, UUIDMixin, TimestampMixin):
    """A submitted expense. Amount fields are opaque to the workflow."""

    __tablename__ = "expenses"

    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True
    )
    submitter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    converted_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExpenseStatus.pending.value, index=True
    )  # pending, approved, rejected
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    submitter: Mapped["User"] = relationship("User", foreign_keys=[submitter_id])  # noqa: F821
    steps: Mapped[list["ApprovalStep"]] = relationship(  # noqa: F821
        "ApprovalStep",
        back_populates="expense",
        order_by="ApprovalStep.step_order",
        cascade="all, delete-orphan",
    )
