"""Seed script: creates a demo company, its roster and a three-step approval rule set.

Idempotent: checks for existing records before inserting.
Run: cd backend && python scripts/seed.py
"""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_flow.db.session import SessionLocal
from approval_flow.models import ApprovalRule, Company, User

COMPANY_NAME = "Demo Corp"

# (email, name, role, manager email)
USERS = [
    ("admin@demo.test", "Dana Admin", "ADMIN", None),
    ("manager@demo.test", "Miles Manager", "MANAGER", None),
    ("cfo@demo.test", "Carla CFO", "CFO", None),
    ("fin1@demo.test", "Frank Finance", "FINANCE", None),
    ("fin2@demo.test", "Fiona Finance", "FINANCE", None),
    ("fin3@demo.test", "Felix Finance", "FINANCE", None),
    ("employee@demo.test", "Erin Employee", "EMPLOYEE", "manager@demo.test"),
]

# (step_order, kind, role, threshold, is_manager_gate)
RULES = [
    (1, "percentage", "FINANCE", 60, False),
    (2, "specific", "CFO", None, False),
    (3, "specific", "MANAGER", None, True),
]


# ─── Upsert helpers ───────────────────────────────────────────────────────────

def _upsert_company(db: Session) -> Company:
    company = db.execute(select(Company).where(Company.name == COMPANY_NAME)).scalars().first()
    if company:
        print(f"  [skip] Company {COMPANY_NAME}")
        return company
    company = Company(name=COMPANY_NAME, base_currency="USD", country="US")
    db.add(company)
    db.flush()
    print(f"  [new]  Company {COMPANY_NAME}")
    return company


def _upsert_user(db: Session, company: Company, email: str, name: str, role: str,
                 manager: User | None) -> User:
    user = db.execute(select(User).where(User.email == email)).scalars().first()
    if user:
        print(f"  [skip] User {email}")
        return user
    user = User(
        company_id=company.id, email=email, name=name, role=role,
        manager_id=manager.id if manager else None, is_active=True,
    )
    db.add(user)
    db.flush()
    print(f"  [new]  User {email} ({role})")
    return user


def _upsert_rule(db: Session, company: Company, step_order: int, kind: str, role: str,
                 threshold: int | None, is_manager_gate: bool) -> ApprovalRule:
    rule = db.execute(
        select(ApprovalRule).where(
            ApprovalRule.company_id == company.id,
            ApprovalRule.step_order == step_order,
        )
    ).scalars().first()
    if rule:
        print(f"  [skip] Rule step {step_order}")
        return rule
    rule = ApprovalRule(
        company_id=company.id, step_order=step_order, rule_kind=kind, role=role,
        threshold=threshold, is_manager_gate=is_manager_gate, is_active=True,
    )
    db.add(rule)
    db.flush()
    print(f"  [new]  Rule step {step_order} ({kind} {role})")
    return rule


# ─── Main ─────────────────────────────────────────────────────────────────────

def seed(db: Session) -> Company:
    print("Seeding company...")
    company = _upsert_company(db)

    print("Seeding users...")
    by_email: dict[str, User] = {}
    for email, name, role, manager_email in USERS:
        by_email[email] = _upsert_user(
            db, company, email, name, role, by_email.get(manager_email) if manager_email else None
        )

    print("Seeding approval rules...")
    for step_order, kind, role, threshold, gate in RULES:
        _upsert_rule(db, company, step_order, kind, role, threshold, gate)

    db.commit()
    print("Done.")
    return company


if __name__ == "__main__":
    with SessionLocal() as session:
        seed(session)
