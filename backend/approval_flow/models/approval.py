import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_flow.db.base import Base, TimestampMixin, UUIDMixin


class StepKind(str, enum.Enum):
    manager = "manager"
    specific = "specific"
    percentage = "percentage"
    hybrid = "hybrid"


SOLE_APPROVER_KINDS = (StepKind.manager.value, StepKind.specific.value)
SHARED_KINDS = (StepKind.percentage.value, StepKind.hybrid.value)


class ApprovalStep(Base, UUIDMixin, TimestampMixin):
    """One stage of an expense's approval sequence.

    Kind and threshold are copied from the rule at initialization, so later
    rule edits never change an in-flight expense.
    """

    __tablename__ = "approval_steps"
    __table_args__ = (
        UniqueConstraint("expense_id", "step_order", name="uq_approval_steps_expense_order"),
    )

    expense_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # manager, specific, percentage, hybrid
    role_label: Mapped[str] = mapped_column(String(50), nullable=False)
    threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approver_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True
    )
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    expense: Mapped["Expense"] = relationship("Expense", back_populates="steps")  # noqa: F821
    approver: Mapped["User | None"] = relationship("User")  # noqa: F821
    voters: Mapped[list["ExpenseApprover"]] = relationship(
        "ExpenseApprover", back_populates="step", cascade="all, delete-orphan"
    )

    @property
    def is_shared(self) -> bool:
        return self.kind in SHARED_KINDS

    @property
    def is_resolved(self) -> bool:
        return self.approved_at is not None or self.rejected_at is not None


class ExpenseApprover(Base, UUIDMixin, TimestampMixin):
    """A user eligible to vote on a percentage/hybrid step."""

    __tablename__ = "expense_approvers"
    __table_args__ = (
        UniqueConstraint("step_id", "approver_id", name="uq_expense_approvers_step_approver"),
    )

    expense_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_steps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    step: Mapped["ApprovalStep"] = relationship("ApprovalStep", back_populates="voters")
    approver: Mapped["User"] = relationship("User")  # noqa: F821

    @property
    def has_voted(self) -> bool:
        return self.approved_at is not None or self.rejected_at is not None
