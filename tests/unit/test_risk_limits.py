from dataclasses import replace

from lifecycle_engine.promotion.demotion import evaluate_demotion
from lifecycle_engine.risk.limits import account_blockers, check_daily_loss, daily_loss_limit
from lifecycle_engine.risk.tiers import RISK_TIERS
from lifecycle_engine.telemetry.schemas import RollupMetrics


def test_daily_loss_limit_uses_tighter_bound() -> None:
    tier = RISK_TIERS["moderate"]
    assert daily_loss_limit(10_000.0, tier) == 200.0
    assert daily_loss_limit(100_000.0, tier) == 1000.0


def test_daily_loss_breach() -> None:
    tier = RISK_TIERS["moderate"]
    assert not check_daily_loss(10_000.0, -150.0, tier).breached
    check = check_daily_loss(10_000.0, -250.0, tier)
    assert check.breached
    assert check.limit_dollars == 200.0


def test_account_blockers_trigger_emergency_demotion() -> None:
    tier = RISK_TIERS["moderate"]
    assert account_blockers(10_000.0, 50.0, tier) == []

    blown = account_blockers(-150.0, 0.0, tier)
    assert [b.code for b in blown] == ["ACCOUNT_BLOWN"]
    kill = account_blockers(10_000.0, -250.0, tier)
    assert [b.code for b in kill] == ["KILL_SWITCH_ENGAGED"]

    decision = evaluate_demotion("CANARY", RollupMetrics(trades=10, sharpe=2.0), blockers=blown)
    assert decision.emergency
    assert decision.target_stage == "TRIALS"


def test_zero_daily_loss_limit_allows_flat_day() -> None:
    strict = replace(RISK_TIERS["moderate"], max_daily_loss_percent=0.0)
    assert daily_loss_limit(50_000.0, strict) == 0.0
    assert not check_daily_loss(50_000.0, 0.0, strict).breached
    assert not check_daily_loss(50_000.0, 25.0, strict).breached
    assert check_daily_loss(50_000.0, -0.01, strict).breached
