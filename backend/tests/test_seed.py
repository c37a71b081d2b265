"""The demo seed is idempotent and yields a workable rule set."""
import importlib.util
from pathlib import Path

from sqlalchemy import func, select

from approval_flow.models import ApprovalRule, User
from approval_flow.services.rule_set import load_rule_set

SEED_PATH = Path(__file__).resolve().parents[1] / "scripts" / "seed.py"


def _load_seed_module():
    spec = importlib.util.spec_from_file_location("seed_script", SEED_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_seed_twice_inserts_once(db):
    seed_script = _load_seed_module()

    company = seed_script.seed(db)
    seed_script.seed(db)

    assert db.execute(select(func.count(User.id))).scalar_one() == len(seed_script.USERS)
    assert db.execute(select(func.count(ApprovalRule.id))).scalar_one() == len(seed_script.RULES)

    rule_set = load_rule_set(db, company.id)
    assert rule_set.manager_gate is not None
    assert [r.step_order for r in rule_set.rules] == [1, 2]

    employee = db.execute(select(User).where(User.email == "employee@demo.test")).scalars().one()
    assert employee.manager_id is not None
