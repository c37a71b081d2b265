"""Tests for workflow initialization (step materialization)."""
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from approval_flow.models import AuditLog, Expense, User
from approval_flow.services.errors import (
    AlreadyInitializedError,
    NotFoundError,
    WorkflowValidationError,
)
from approval_flow.services.workflow import initialize_workflow


def _bare_expense(db, org, submitter=None) -> Expense:
    """An expense row inserted without going through create_expense."""
    submitter = submitter or org.employee
    expense = Expense(
        company_id=org.company.id,
        submitter_id=submitter.id,
        description="Taxi",
        amount=Decimal("42.00"),
        currency="USD",
        category="Travel",
        expense_date=date(2026, 3, 1),
    )
    db.add(expense)
    db.commit()
    return expense


def test_manager_gate_precedes_rule_steps(db, org, add_rule, trail):
    add_rule(1, "specific", "MANAGER")
    add_rule(2, "percentage", "FINANCE", threshold=60)
    add_rule(3, "specific", "MANAGER", gate=True)
    expense = _bare_expense(db, org)

    initialize_workflow(db, expense.id, org.company.id)

    steps = trail.steps(db, expense.id)
    assert [s.step_order for s in steps] == [0, 1, 2]
    assert [s.is_current for s in steps] == [True, False, False]

    gate, specific, shared = steps
    assert gate.kind == "manager"
    assert gate.role_label == "Manager"
    assert gate.approver_id == org.manager.id
    assert specific.kind == "specific"
    assert specific.approver_id == org.manager.id
    assert shared.kind == "percentage"
    assert shared.threshold == 60
    assert shared.approver_id is None
    assert {v.approver_id for v in shared.voters} == {u.id for u in org.finance}


def test_gate_rule_runs_in_place_when_submitter_has_no_manager(db, org, add_rule, trail):
    add_rule(1, "specific", "CFO")
    add_rule(2, "percentage", "FINANCE", threshold=60)
    add_rule(3, "specific", "ADMIN", gate=True)
    expense = _bare_expense(db, org, submitter=org.loner)

    initialize_workflow(db, expense.id, org.company.id)

    steps = trail.steps(db, expense.id)
    assert [s.step_order for s in steps] == [1, 2, 3]
    assert [s.is_current for s in steps] == [True, False, False]
    assert steps[2].kind == "specific"
    assert steps[2].approver_id == org.admin.id


def test_lone_gate_rule_without_manager_becomes_first_step(db, org, add_rule, trail):
    add_rule(4, "specific", "CFO", gate=True)
    expense = _bare_expense(db, org, submitter=org.loner)

    initialize_workflow(db, expense.id, org.company.id)

    steps = trail.steps(db, expense.id)
    assert [(s.step_order, s.is_current, s.approver_id) for s in steps] == [(4, True, org.cfo.id)]


def test_first_rule_step_is_current_without_gate(db, org, add_rule, trail):
    add_rule(1, "specific", "CFO")
    add_rule(2, "specific", "ADMIN")
    expense = _bare_expense(db, org)

    initialize_workflow(db, expense.id, org.company.id)

    steps = trail.steps(db, expense.id)
    assert [s.is_current for s in steps] == [True, False]
    assert trail.current_count(db, expense.id) == 1


def test_empty_rule_set_auto_approves(db, org, add_rule, trail):
    add_rule(1, "specific", "CFO", active=False)
    expense = _bare_expense(db, org)

    steps = initialize_workflow(db, expense.id, org.company.id)

    assert steps == []
    assert trail.steps(db, expense.id) == []
    db.refresh(expense)
    assert expense.status == "approved"
    assert expense.approved_at is not None
    actions = db.execute(
        select(AuditLog.action).where(AuditLog.entity_id == expense.id)
    ).scalars().all()
    assert "expense_auto_approved" in actions


def test_second_initialization_is_refused(db, org, add_rule, trail):
    add_rule(1, "specific", "CFO")
    expense = _bare_expense(db, org)
    initialize_workflow(db, expense.id, org.company.id)

    with pytest.raises(AlreadyInitializedError):
        initialize_workflow(db, expense.id, org.company.id)

    assert len(trail.steps(db, expense.id)) == 1


def test_initialization_checks_company(db, org, add_rule, trail):
    add_rule(1, "specific", "CFO")
    expense = _bare_expense(db, org)

    with pytest.raises(NotFoundError):
        initialize_workflow(db, expense.id, uuid.uuid4())
    with pytest.raises(NotFoundError):
        initialize_workflow(db, uuid.uuid4(), org.company.id)

    assert trail.steps(db, expense.id) == []


def test_steps_are_a_snapshot_of_the_rules(db, org, add_rule, submit, trail):
    rule = add_rule(1, "percentage", "FINANCE", threshold=60)
    expense = submit()

    rule.threshold = 90
    rule.rule_kind = "hybrid"
    db.commit()

    step = trail.steps(db, expense.id)[0]
    assert step.threshold == 60
    assert step.kind == "percentage"


def test_inactive_members_are_not_approvers(db, org, add_rule, submit, trail):
    org.finance[2].is_active = False
    db.commit()
    add_rule(1, "percentage", "FINANCE", threshold=50)

    expense = submit()

    step = trail.steps(db, expense.id)[0]
    assert {v.approver_id for v in step.voters} == {org.finance[0].id, org.finance[1].id}


def test_empty_pool_is_created_and_reported(db, org, add_rule, submit, trail, caplog):
    add_rule(1, "percentage", "DIRECTOR", threshold=50)

    with caplog.at_level("WARNING", logger="approval_flow.services.workflow"):
        expense = submit()

    step = trail.steps(db, expense.id)[0]
    assert step.is_current
    assert step.voters == []
    assert "no eligible approver" in caplog.text


def test_malformed_rule_leaves_nothing_behind(db, org, add_rule, submit):
    add_rule(1, "percentage", "FINANCE", threshold=0)

    with pytest.raises(WorkflowValidationError):
        submit()

    assert db.execute(select(func.count(Expense.id))).scalar_one() == 0


def test_initialization_is_audited(db, org, add_rule, submit):
    add_rule(1, "specific", "CFO")
    expense = submit()

    entry = db.execute(
        select(AuditLog).where(
            AuditLog.entity_id == expense.id,
            AuditLog.action == "workflow_initialized",
        )
    ).scalars().one()
    assert '"step_order": 1' in entry.after_state


def test_roster_role_is_normalized_and_resolved(db, org, add_rule, submit, trail):
    org.cfo.is_active = False
    cased = User(
        company_id=org.company.id, email="casey@acme.test", name="Casey", role=" Cfo ",
    )
    db.add(cased)
    db.commit()
    add_rule(1, "specific", "cfo")

    expense = submit()

    assert cased.role == "CFO"
    [step] = trail.steps(db, expense.id)
    assert step.approver_id == cased.id


def test_unknown_roster_role_is_refused(org):
    with pytest.raises(WorkflowValidationError, match="Unknown role 'Intern'"):
        User(company_id=org.company.id, email="ivy@acme.test", name="Ivy", role="Intern")
