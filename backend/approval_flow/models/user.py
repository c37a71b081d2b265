import enum
import uuid

from sqlalchemy import Boolean, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from approval_flow.db.base import Base, TimestampMixin, UUIDMixin


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CFO = "CFO"
    DIRECTOR = "DIRECTOR"
    FINANCE = "FINANCE"
    EMPLOYEE = "EMPLOYEE"


ROLES = tuple(r.value for r in Role)


def parse_role(value: "str | Role") -> Role:
    """Return the Role for ``value`` (case-insensitive).

    Raises WorkflowValidationError for anything outside ROLES, so a typo in a
    rule's role selector or a roster entry fails loudly instead of resolving
    an empty pool.
    """
    from approval_flow.services.errors import WorkflowValidationError

    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().upper())
    except ValueError:
        raise WorkflowValidationError(
            f"Unknown role '{value}'. Expected one of: {', '.join(ROLES)}."
        ) from None


class User(Base, UUIDMixin, TimestampMixin):
    """Company roster entry. Owned by the user-management service."""

    __tablename__ = "users"

    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default=Role.EMPLOYEE.value)
    manager_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    manager: Mapped["User | None"] = relationship("User", remote_side="User.id")

    @validates("role")
    def _normalize_role(self, key: str, value: "str | Role") -> str:
        return parse_role(value).value
