"""Company approval rule configuration.

Rules are owned by the rule-management service; the workflow engine only
reads them and snapshots what it needs onto each expense's steps.
"""
import enum
import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from approval_flow.db.base import Base, TimestampMixin, UUIDMixin


class RuleKind(str, enum.Enum):
    specific = "specific"
    percentage = "percentage"
    hybrid = "hybrid"


class ApprovalRule(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "approval_rules"
    __table_args__ = (
        UniqueConstraint("company_id", "step_order", name="uq_approval_rules_company_step"),
    )

    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)  # >= 1; 0 is the manager gate
    rule_kind: Mapped[str] = mapped_column(String(20), nullable=False)  # specific, percentage, hybrid
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)  # percent, 1-100
    is_manager_gate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
