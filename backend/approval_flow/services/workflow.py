"""Approval workflow lifecycle: step materialization and advancement.

All functions accept a sync SQLAlchemy Session. Public entry points own their
transaction; the helpers without a commit (materialize_steps, advance) are
meant to run inside a caller's transaction that already holds the expense
lock.
"""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_flow.core.config import settings
from approval_flow.db.session import atomic
from approval_flow.models.approval import ApprovalStep, ExpenseApprover, StepKind
from approval_flow.models.expense import Expense, ExpenseStatus
from approval_flow.models.user import Role, User
from approval_flow.services import audit as audit_svc
from approval_flow.services.errors import AlreadyInitializedError, NotFoundError
from approval_flow.services.rule_set import ResolvedRule, load_rule_set

logger = logging.getLogger(__name__)


# ─── Locking / lookup ───

def lock_expense(db: Session, expense_id: uuid.UUID) -> Expense:
    """Load the expense with an exclusive row lock held until commit/rollback.

    Every read-then-write on an expense's steps and approver rows happens
    after this call, so concurrent decisions on one expense serialize here.
    """
    expense = db.execute(
        select(Expense)
        .where(Expense.id == expense_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if expense is None:
        raise NotFoundError(f"Expense {expense_id} not found.")
    return expense


def get_current_step(db: Session, expense_id: uuid.UUID) -> ApprovalStep | None:
    return db.execute(
        select(ApprovalStep)
        .where(
            ApprovalStep.expense_id == expense_id,
            ApprovalStep.is_current.is_(True),
        )
        .execution_options(populate_existing=True)
    ).scalars().first()


def pool_size(db: Session, step_id: uuid.UUID) -> int:
    return db.execute(
        select(func.count(ExpenseApprover.id)).where(ExpenseApprover.step_id == step_id)
    ).scalar_one()


def is_deadlocked(db: Session, step: ApprovalStep) -> bool:
    """True when nobody could ever satisfy ``step``."""
    if step.is_shared:
        return pool_size(db, step.id) == 0
    return step.approver_id is None


# ─── Initialize ───

def initialize_workflow(
    db: Session,
    expense_id: uuid.UUID,
    company_id: uuid.UUID,
) -> list[ApprovalStep]:
    """Materialize the approval steps for a freshly created expense.

    Runs in its own transaction: either every step and approver row is
    written, or none is.

    Raises:
        NotFoundError: expense missing or not owned by ``company_id``.
        AlreadyInitializedError: the expense already has steps.
        WorkflowValidationError: a malformed active rule.
        PersistenceError: storage failure (rolled back).
    """
    with atomic(db):
        expense = lock_expense(db, expense_id)
        if expense.company_id != company_id:
            raise NotFoundError(f"Expense {expense_id} not found for company {company_id}.")
        steps = materialize_steps(db, expense)
    return steps


def materialize_steps(db: Session, expense: Expense) -> list[ApprovalStep]:
    """Create the step snapshot for ``expense`` from its company's active rules.

    Does not commit. An empty rule set approves the expense immediately.
    """
    existing = db.execute(
        select(func.count(ApprovalStep.id)).where(ApprovalStep.expense_id == expense.id)
    ).scalar_one()
    if existing:
        raise AlreadyInitializedError(f"Expense {expense.id} already has an approval workflow.")

    rule_set = load_rule_set(db, expense.company_id)
    submitter = db.get(User, expense.submitter_id)
    manager_id = submitter.manager_id if submitter is not None else None

    steps: list[ApprovalStep] = []
    rules = rule_set.ordered_rules()

    if rule_set.manager_gate is not None:
        if manager_id is not None:
            gate_step = ApprovalStep(
                expense_id=expense.id,
                step_order=0,
                kind=StepKind.manager.value,
                role_label=settings.MANAGER_STEP_LABEL,
                approver_id=manager_id,
                is_current=True,
            )
            db.add(gate_step)
            steps.append(gate_step)
            logger.info(
                "materialize_steps: manager step created for expense=%s manager=%s",
                expense.id, manager_id,
            )
        else:
            logger.info(
                "materialize_steps: submitter %s has no manager; gate rule %s runs as step %s",
                expense.submitter_id, rule_set.manager_gate.rule.rule_id,
                rule_set.manager_gate.rule.step_order,
            )
            rules = rule_set.ordered_rules(include_gate_rule=True)

    for rule in rules:
        step = _step_from_rule(db, expense, rule, is_current=not steps)
        steps.append(step)

    if not steps:
        now = datetime.now(timezone.utc)
        expense.status = ExpenseStatus.approved.value
        expense.approved_at = now
        db.flush()
        audit_svc.log(
            db=db,
            action="expense_auto_approved",
            entity_type="expense",
            entity_id=expense.id,
            after={"status": expense.status, "approved_at": now.isoformat()},
            notes="No active approval rules for company",
        )
        logger.info("materialize_steps: expense=%s auto-approved (empty workflow)", expense.id)
        return steps

    db.flush()

    for step in steps:
        if is_deadlocked(db, step):
            logger.warning(
                "materialize_steps: expense=%s step=%s (%s/%s) has no eligible approver; "
                "the workflow will stall there",
                expense.id, step.step_order, step.kind, step.role_label,
            )

    audit_svc.log(
        db=db,
        action="workflow_initialized",
        entity_type="expense",
        entity_id=expense.id,
        after={
            "steps": [
                {
                    "step_order": s.step_order,
                    "kind": s.kind,
                    "role": s.role_label,
                    "approver_id": str(s.approver_id) if s.approver_id else None,
                    "pool_size": len(s.voters),
                    "is_current": s.is_current,
                }
                for s in steps
            ],
        },
    )
    logger.info("materialize_steps: expense=%s workflow initialized with %d steps", expense.id, len(steps))
    return steps


def _step_from_rule(
    db: Session,
    expense: Expense,
    rule: ResolvedRule,
    is_current: bool,
) -> ApprovalStep:
    step = ApprovalStep(
        expense_id=expense.id,
        step_order=rule.step_order,
        kind=rule.kind.value,
        role_label=rule.role.value,
        threshold=rule.threshold,
        is_current=is_current,
    )
    db.add(step)

    members = _company_members_with_role(db, expense.company_id, rule.role)
    if rule.is_shared:
        for member_id in members:
            step.voters.append(ExpenseApprover(expense_id=expense.id, approver_id=member_id))
    elif members:
        step.approver_id = members[0]
    return step


def _company_members_with_role(db: Session, company_id: uuid.UUID, role: Role) -> list[uuid.UUID]:
    """Active company members holding ``role``, by id ascending."""
    return list(
        db.execute(
            select(User.id)
            .where(
                User.company_id == company_id,
                User.role == role.value,
                User.is_active.is_(True),
            )
            .order_by(User.id)
        ).scalars().all()
    )


# ─── Advance ───

def advance(db: Session, expense: Expense, completed_step_order: int) -> ApprovalStep | None:
    """Move the current pointer past a satisfied step.

    Returns the new current step, or None when the expense was finalized as
    approved; this is the only place an expense becomes approved through
    its steps. Does not commit.
    """
    completed = db.execute(
        select(ApprovalStep).where(
            ApprovalStep.expense_id == expense.id,
            ApprovalStep.step_order == completed_step_order,
        )
    ).scalars().one()
    completed.is_current = False

    next_step = db.execute(
        select(ApprovalStep)
        .where(
            ApprovalStep.expense_id == expense.id,
            ApprovalStep.step_order > completed_step_order,
        )
        .order_by(ApprovalStep.step_order)
        .limit(1)
    ).scalars().first()

    if next_step is not None:
        next_step.is_current = True
        db.flush()
        logger.info(
            "advance: expense=%s step %s -> %s",
            expense.id, completed_step_order, next_step.step_order,
        )
        if is_deadlocked(db, next_step):
            logger.error(
                "advance: expense=%s is stalled at step %s (%s/%s): no eligible approver",
                expense.id, next_step.step_order, next_step.kind, next_step.role_label,
            )
        return next_step

    now = datetime.now(timezone.utc)
    expense.status = ExpenseStatus.approved.value
    expense.approved_at = now
    db.flush()
    audit_svc.log(
        db=db,
        action="expense_approved",
        entity_type="expense",
        entity_id=expense.id,
        before={"status": ExpenseStatus.pending.value},
        after={"status": expense.status, "approved_at": now.isoformat()},
        notes=f"Final step {completed_step_order} satisfied",
    )
    logger.info("advance: expense=%s approved after step %s", expense.id, completed_step_order)
    return None
