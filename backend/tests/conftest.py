"""Shared fixtures: an SQLite-backed session and a seeded company roster."""
import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from approval_flow.db.base import Base
from approval_flow.db.session import build_engine
from approval_flow.models import ApprovalRule, ApprovalStep, Company, User
from approval_flow.schemas.expense import ExpenseCreate
from approval_flow.services.expenses import create_expense


@dataclass
class Org:
    company: Company
    admin: User
    manager: User
    cfo: User
    finance: list[User]
    employee: User  # reports to ``manager``
    loner: User     # no manager


# ─── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ─── Roster ───────────────────────────────────────────────────────────────────

def _user(db, company, name, role, manager=None):
    user = User(
        company_id=company.id,
        email=f"{name.lower().replace(' ', '.')}@acme.test",
        name=name,
        role=role,
        manager_id=manager.id if manager else None,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def org(db) -> Org:
    """ACME with one user per privileged role, three finance approvers and no DIRECTOR."""
    company = Company(name="ACME", base_currency="USD", country="US")
    db.add(company)
    db.flush()

    admin = _user(db, company, "Ada Admin", "ADMIN")
    manager = _user(db, company, "Max Manager", "MANAGER")
    cfo = _user(db, company, "Cora CFO", "CFO")
    finance = [_user(db, company, f"Fin {n}", "FINANCE") for n in ("One", "Two", "Three")]
    employee = _user(db, company, "Eve Employee", "EMPLOYEE", manager=manager)
    loner = _user(db, company, "Lou Loner", "EMPLOYEE")
    db.commit()

    return Org(
        company=company,
        admin=admin,
        manager=manager,
        cfo=cfo,
        finance=finance,
        employee=employee,
        loner=loner,
    )


# ─── Factories ────────────────────────────────────────────────────────────────

@pytest.fixture
def add_rule(db, org):
    """Insert an approval rule for ``org.company``."""

    def _add(step_order, kind, role, threshold=None, gate=False, active=True):
        rule = ApprovalRule(
            company_id=org.company.id,
            step_order=step_order,
            rule_kind=kind,
            role=role,
            threshold=threshold,
            is_manager_gate=gate,
            is_active=active,
        )
        db.add(rule)
        db.commit()
        return rule

    return _add


@pytest.fixture
def submit(db, org):
    """Submit an expense through the service (workflow included)."""

    def _submit(submitter=None, amount="120.50", description="Client dinner"):
        body = ExpenseCreate(
            description=description,
            amount=Decimal(amount),
            currency="usd",
            category="Meals",
            expense_date=date(2026, 3, 14),
        )
        return create_expense(db, submitter or org.employee, body)

    return _submit


def steps_of(db, expense_id) -> list[ApprovalStep]:
    return list(
        db.execute(
            select(ApprovalStep)
            .where(ApprovalStep.expense_id == expense_id)
            .order_by(ApprovalStep.step_order)
            .execution_options(populate_existing=True)
        ).scalars().all()
    )


def current_step_count(db, expense_id) -> int:
    return db.execute(
        select(func.count(ApprovalStep.id)).where(
            ApprovalStep.expense_id == expense_id,
            ApprovalStep.is_current.is_(True),
        )
    ).scalar_one()


@pytest.fixture
def trail():
    """Step readers, bound late so tests can pass any session."""

    class _Trail:
        steps = staticmethod(steps_of)
        current_count = staticmethod(current_step_count)

    return _Trail
