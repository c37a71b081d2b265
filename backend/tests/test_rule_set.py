"""Tests for company rule-set resolution."""
import logging
import uuid

import pytest

from approval_flow.models.approval_rule import ApprovalRule, RuleKind
from approval_flow.models.user import Role
from approval_flow.services.errors import WorkflowValidationError
from approval_flow.services.rule_set import load_rule_set, resolve_rule


def _rule(**overrides) -> ApprovalRule:
    fields = dict(
        id=uuid.uuid4(),
        company_id=uuid.uuid4(),
        step_order=1,
        rule_kind="percentage",
        role="FINANCE",
        threshold=60,
        is_manager_gate=False,
        is_active=True,
    )
    fields.update(overrides)
    return ApprovalRule(**fields)


# ─── resolve_rule ─────────────────────────────────────────────────────────────

def test_resolve_rule_normalizes_role_case():
    resolved = resolve_rule(_rule(role="finance"))
    assert resolved.role is Role.FINANCE
    assert resolved.kind is RuleKind.percentage
    assert resolved.threshold == 60
    assert resolved.is_shared


def test_resolve_rule_drops_threshold_for_specific_rules():
    resolved = resolve_rule(_rule(rule_kind="specific", role="CFO", threshold=50))
    assert resolved.threshold is None
    assert not resolved.is_shared


def test_hybrid_rule_is_shared():
    assert resolve_rule(_rule(rule_kind="hybrid", threshold=75)).is_shared


@pytest.mark.parametrize("threshold", [None, 0, 101, -5])
def test_resolve_rule_rejects_threshold_out_of_range(threshold):
    with pytest.raises(WorkflowValidationError, match="threshold"):
        resolve_rule(_rule(threshold=threshold))


def test_resolve_rule_rejects_unknown_role():
    with pytest.raises(WorkflowValidationError, match="Unknown role 'Finanse'"):
        resolve_rule(_rule(role="Finanse"))


def test_resolve_rule_rejects_unknown_kind():
    with pytest.raises(WorkflowValidationError, match="unknown kind"):
        resolve_rule(_rule(rule_kind="unanimous"))


def test_resolve_rule_rejects_step_order_zero():
    with pytest.raises(WorkflowValidationError, match="step order"):
        resolve_rule(_rule(step_order=0))


# ─── load_rule_set ────────────────────────────────────────────────────────────

def test_load_rule_set_orders_active_rules(db, org, add_rule):
    add_rule(3, "specific", "CFO")
    add_rule(1, "percentage", "FINANCE", threshold=60)
    add_rule(2, "specific", "ADMIN", active=False)

    rule_set = load_rule_set(db, org.company.id)

    assert [r.step_order for r in rule_set.rules] == [1, 3]
    assert rule_set.manager_gate is None
    assert not rule_set.is_empty


def test_load_rule_set_splits_out_manager_gate(db, org, add_rule):
    add_rule(1, "specific", "MANAGER")
    add_rule(2, "percentage", "FINANCE", threshold=60)
    add_rule(3, "specific", "MANAGER", gate=True)

    rule_set = load_rule_set(db, org.company.id)

    assert rule_set.manager_gate is not None
    assert rule_set.manager_gate.rule.step_order == 3
    assert [r.step_order for r in rule_set.ordered_rules()] == [1, 2]
    assert [r.step_order for r in rule_set.ordered_rules(include_gate_rule=True)] == [1, 2, 3]


def test_extra_manager_gate_rules_become_ordinary(db, org, add_rule, caplog):
    add_rule(1, "specific", "MANAGER", gate=True)
    add_rule(2, "specific", "CFO", gate=True)

    with caplog.at_level(logging.WARNING, logger="approval_flow.services.rule_set"):
        rule_set = load_rule_set(db, org.company.id)

    assert rule_set.manager_gate.rule.step_order == 1
    assert [r.step_order for r in rule_set.rules] == [2]
    assert "more than one manager-gate rule" in caplog.text


def test_empty_rule_set(db, org):
    rule_set = load_rule_set(db, org.company.id)
    assert rule_set.is_empty
    assert rule_set.ordered_rules(include_gate_rule=True) == []


def test_malformed_active_rule_fails_resolution(db, org, add_rule):
    add_rule(1, "percentage", "FINANCE", threshold=150)
    with pytest.raises(WorkflowValidationError):
        load_rule_set(db, org.company.id)
