"""Company rule-set resolution.

Loads a company's active approval rules in step order, validates them, and
separates out the optional manager gate.
"""
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_flow.models.approval_rule import ApprovalRule, RuleKind
from approval_flow.models.user import Role, parse_role
from approval_flow.services.errors import WorkflowValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedRule:
    rule_id: uuid.UUID
    step_order: int
    kind: RuleKind
    role: Role
    threshold: int | None

    @property
    def is_shared(self) -> bool:
        return self.kind in (RuleKind.percentage, RuleKind.hybrid)


@dataclass(frozen=True)
class ManagerGate:
    """The submitter's-manager-approves-first requirement, carried by one rule.

    When the submitter has no manager the gate's rule is used as an
    ordinary step at its own order instead.
    """

    rule: ResolvedRule


@dataclass(frozen=True)
class RuleSet:
    company_id: uuid.UUID
    manager_gate: ManagerGate | None
    rules: tuple[ResolvedRule, ...]

    @property
    def is_empty(self) -> bool:
        return self.manager_gate is None and not self.rules

    def ordered_rules(self, include_gate_rule: bool = False) -> list[ResolvedRule]:
        rules = list(self.rules)
        if include_gate_rule and self.manager_gate is not None:
            rules.append(self.manager_gate.rule)
        return sorted(rules, key=lambda r: r.step_order)


def resolve_rule(rule: ApprovalRule) -> ResolvedRule:
    """Validate one configured rule.

    Raises:
        WorkflowValidationError: unknown kind or role, step order below 1, or a
            percentage/hybrid rule without a threshold in 1..100.
    """
    try:
        kind = RuleKind(rule.rule_kind)
    except ValueError:
        raise WorkflowValidationError(
            f"Approval rule {rule.id} has unknown kind '{rule.rule_kind}'."
        ) from None

    if rule.step_order is None or rule.step_order < 1:
        raise WorkflowValidationError(
            f"Approval rule {rule.id} has invalid step order {rule.step_order}; must be >= 1."
        )

    role = parse_role(rule.role)

    threshold = rule.threshold
    if kind in (RuleKind.percentage, RuleKind.hybrid):
        if threshold is None or not 1 <= threshold <= 100:
            raise WorkflowValidationError(
                f"Approval rule {rule.id} needs a threshold between 1 and 100 "
                f"for {kind.value} rules (got {threshold})."
            )
    else:
        threshold = None

    return ResolvedRule(
        rule_id=rule.id,
        step_order=rule.step_order,
        kind=kind,
        role=role,
        threshold=threshold,
    )


def load_rule_set(db: Session, company_id: uuid.UUID) -> RuleSet:
    """Return the company's active rules, ordered by step, with the manager gate split out."""
    rows = db.execute(
        select(ApprovalRule)
        .where(
            ApprovalRule.company_id == company_id,
            ApprovalRule.is_active.is_(True),
        )
        .order_by(ApprovalRule.step_order)
    ).scalars().all()

    gate: ManagerGate | None = None
    rules: list[ResolvedRule] = []
    for row in rows:
        resolved = resolve_rule(row)
        if row.is_manager_gate:
            if gate is None:
                gate = ManagerGate(rule=resolved)
                continue
            logger.warning(
                "load_rule_set: company %s has more than one manager-gate rule; "
                "rule %s (step %s) is treated as an ordinary rule.",
                company_id, row.id, row.step_order,
            )
        rules.append(resolved)

    return RuleSet(company_id=company_id, manager_gate=gate, rules=tuple(rules))
