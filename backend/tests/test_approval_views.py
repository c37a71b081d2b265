"""Tests for the pending / history / company-pending read models."""
import pytest

from approval_flow.schemas.approval import (
    SequentialCompanyPendingItem,
    SequentialPendingItem,
    SharedCompanyPendingItem,
    SharedPendingItem,
)
from approval_flow.services import approval_views, decisions
from approval_flow.services.errors import ForbiddenError, WorkflowValidationError


# ─── Pending for user ─────────────────────────────────────────────────────────

def test_pending_lists_sole_approver_steps(db, org, add_rule, submit):
    add_rule(1, "specific", "CFO")
    expense = submit()

    items = approval_views.list_pending_for_user(db, org.cfo.id)

    assert len(items) == 1
    item = items[0]
    assert isinstance(item, SequentialPendingItem)
    assert item.approval_type == "sequential"
    assert item.expense.id == expense.id
    assert item.expense.currency == "USD"
    assert item.submitter_name == "Eve Employee"
    assert item.step_order == 1
    assert item.role_label == "CFO"


def test_pending_lists_shared_steps_with_counts(db, org, add_rule, submit):
    add_rule(1, "percentage", "FINANCE", threshold=100)
    expense = submit()
    decisions.approve(db, expense.id, org.finance[0].id)

    assert approval_views.list_pending_for_user(db, org.finance[0].id) == []

    items = approval_views.list_pending_for_user(db, org.finance[1].id)
    assert len(items) == 1
    item = items[0]
    assert isinstance(item, SharedPendingItem)
    assert item.threshold == 100
    assert item.total_approvers == 3
    assert item.approved_count == 1


def test_pending_skips_steps_that_are_not_current(db, org, add_rule, submit):
    add_rule(1, "specific", "CFO")
    add_rule(2, "specific", "MANAGER", gate=True)
    submit()

    assert approval_views.list_pending_for_user(db, org.cfo.id) == []
    assert len(approval_views.list_pending_for_user(db, org.manager.id)) == 1


def test_pending_skips_finalized_expenses(db, org, add_rule, submit):
    add_rule(1, "specific", "CFO")
    expense = submit()
    decisions.reject(db, expense.id, org.cfo.id, "Not business related")

    assert approval_views.list_pending_for_user(db, org.cfo.id) == []


# ─── History ──────────────────────────────────────────────────────────────────

def test_history_covers_both_step_kinds(db, org, add_rule, submit):
    add_rule(1, "percentage", "FINANCE", threshold=60)
    add_rule(2, "specific", "CFO")
    approved = submit(description="Conference ticket")
    rejected = submit(description="Team lunch")

    decisions.approve(db, approved.id, org.finance[0].id)
    decisions.reject(db, rejected.id, org.finance[0].id, "Over the per-head limit")

    items = approval_views.list_history_for_user(db, org.finance[0].id)

    assert [i.expense.id for i in items] == [rejected.id, approved.id]
    latest, earlier = items
    assert latest.approval_type == "shared"
    assert latest.action_taken == "rejected"
    assert latest.comments == "Over the per-head limit"
    assert earlier.action_taken == "approved"
    assert earlier.comments is None


def test_history_includes_sole_approver_decisions(db, org, add_rule, submit):
    add_rule(1, "specific", "CFO")
    expense = submit()
    decisions.approve(db, expense.id, org.cfo.id, comments="OK")

    items = approval_views.list_history_for_user(db, org.cfo.id)

    assert len(items) == 1
    assert items[0].approval_type == "sequential"
    assert items[0].action_taken == "approved"
    assert items[0].comments == "OK"
    assert items[0].expense.status == "approved"


def test_history_is_empty_for_undecided_user(db, org, add_rule, submit):
    add_rule(1, "percentage", "FINANCE", threshold=60)
    submit()
    assert approval_views.list_history_for_user(db, org.finance[2].id) == []


# ─── Company pending ──────────────────────────────────────────────────────────

def test_company_pending_annotates_current_approver(db, org, add_rule, submit):
    add_rule(1, "percentage", "FINANCE", threshold=60)
    add_rule(2, "specific", "MANAGER", gate=True)
    gated = submit(description="Hotel")
    shared = submit(submitter=org.loner, description="Flight")
    decisions.approve(db, shared.id, org.finance[0].id)

    items = approval_views.list_company_pending(db, org.company.id, "ADMIN")

    by_expense = {item.expense.id: item for item in items}
    assert set(by_expense) == {gated.id, shared.id}

    manager_item = by_expense[gated.id]
    assert isinstance(manager_item, SequentialCompanyPendingItem)
    assert manager_item.current_approver == "Max Manager"
    assert manager_item.is_manager_step is True
    assert manager_item.is_deadlocked is False

    shared_item = by_expense[shared.id]
    assert isinstance(shared_item, SharedCompanyPendingItem)
    assert shared_item.current_approver == "Multiple Approvers"
    assert shared_item.total_approvers == 3
    assert shared_item.approved_count == 1


def test_company_pending_flags_stalled_expenses(db, org, add_rule, submit, caplog):
    add_rule(1, "specific", "DIRECTOR")
    submit()

    with caplog.at_level("WARNING", logger="approval_flow.services.approval_views"):
        items = approval_views.list_company_pending(db, org.company.id, "CFO")

    assert len(items) == 1
    assert items[0].current_approver == "Unassigned"
    assert items[0].is_deadlocked is True
    assert "stalled" in caplog.text


def test_company_pending_excludes_finalized_expenses(db, org, add_rule, submit):
    add_rule(1, "specific", "CFO")
    expense = submit()
    decisions.approve(db, expense.id, org.cfo.id)

    assert approval_views.list_company_pending(db, org.company.id, "MANAGER") == []


@pytest.mark.parametrize("role", ["EMPLOYEE", "FINANCE", "DIRECTOR"])
def test_company_pending_requires_privileged_role(db, org, role):
    with pytest.raises(ForbiddenError):
        approval_views.list_company_pending(db, org.company.id, role)


def test_company_pending_rejects_unknown_role(db, org):
    with pytest.raises(WorkflowValidationError):
        approval_views.list_company_pending(db, org.company.id, "janitor")


def test_company_pending_accepts_lowercase_role(db, org):
    assert approval_views.list_company_pending(db, org.company.id, "admin") == []
