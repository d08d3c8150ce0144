import random
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from lifecycle_engine.core import blockers as bk
from lifecycle_engine.core.types import STAGE_ORDER
from lifecycle_engine.promotion.engine import PromotionConfig, evaluate
from lifecycle_engine.telemetry.schemas import BacktestRollup, BrokerConnection, RollupMetrics

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
VERIFIED = BrokerConnection(
    status="CONNECTED", last_success_at=NOW, verification="VERIFIED", last_verified_at=NOW
)


def _paper_metrics(trades: int) -> RollupMetrics:
    return RollupMetrics(
        trades=trades, win_rate=50.0, profit_factor=1.5, last_trade_at=NOW - timedelta(days=1)
    )


def _canary_metrics() -> RollupMetrics:
    return RollupMetrics(
        trades=60,
        win_rate=55.0,
        profit_factor=1.8,
        sharpe=1.3,
        max_drawdown_pct=8.0,
        last_trade_at=NOW - timedelta(hours=3),
    )


def test_paper_with_24_trades_is_near() -> None:
    near = evaluate("PAPER", _paper_metrics(24), "OK", as_of=NOW)
    assert near.target_stage == "SHADOW"
    assert near.gates["min_trades"].status == "NEAR"
    assert not near.gates["min_trades"].passed
    assert near.gates["min_trades"].required == 30.0

    passed = sum(1 for g in near.gates.values() if g.passed)
    assert passed == len(near.gates) - 1
    assert near.progress_percent == 100.0 * passed / len(near.gates)
    assert not near.promotion_allowed
    assert not near.override_required
    assert near.gates["min_trades"].severity == "error"
    assert [b.code for b in near.blockers] == ["INSUFFICIENT_TRADES"]
    assert [c.code for c in near.ctas] == ["OPEN_AUDIT"]


def test_paper_with_enough_trades_passes_everything() -> None:
    result = evaluate("PAPER", _paper_metrics(30), "OK", as_of=NOW)
    assert result.gates["min_trades"].status == "PASSED"
    assert result.progress_percent == 100.0
    assert result.all_gates_passed
    assert not result.override_required
    assert result.ctas == ()
    assert result.blockers == ()
    assert result.bucket == "A+"


def test_trades_below_near_band() -> None:
    result = evaluate("PAPER", _paper_metrics(23), "OK", as_of=NOW)
    assert result.gates["min_trades"].status == "BELOW"
    assert not result.promotion_allowed


def test_trade_thresholds_per_stage() -> None:
    for stage, expected in [("PAPER", 30.0), ("SHADOW", 25.0), ("CANARY", 60.0)]:
        result = evaluate(stage, _paper_metrics(0), "OK", as_of=NOW)
        assert result.gates["min_trades"].required == expected
    assert "min_trades" not in evaluate("TRIALS", _paper_metrics(0), "OK", as_of=NOW).gates


def test_degraded_health_blocks_promotion() -> None:
    result = evaluate("PAPER", _paper_metrics(30), "DEGRADED", as_of=NOW)
    assert not result.promotion_allowed
    assert not result.gates["health"].passed
    codes = {b.code: b for b in result.blockers}
    assert codes["DEGRADED_HEALTH"].severity == "CRITICAL"
    assert codes["DEGRADED_HEALTH"].category == "eligibility"
    assert "VIEW_HEALTH" in [c.code for c in result.ctas]


def test_critical_blocker_blocks_promotion() -> None:
    result = evaluate(
        "PAPER", _paper_metrics(30), "BLOCKED", blockers=[bk.runner_error(1)], as_of=NOW
    )
    assert not result.gates["critical_blockers"].passed
    assert result.gates["critical_blockers"].value == 1
    assert not result.promotion_allowed


def test_missing_metrics() -> None:
    result = evaluate("PAPER", None, "OK", as_of=NOW)
    assert not result.promotion_allowed
    assert result.gates["metrics_available"].status == "BELOW"
    assert result.ctas[0].code == "RUN_BACKTEST"
    assert result.bucket == "UNRATED"


def test_live_is_terminal() -> None:
    result = evaluate("LIVE", _canary_metrics(), "OK", as_of=NOW)
    assert result.target_stage is None
    assert result.gates == {}
    assert result.progress_percent == 0.0
    assert not result.promotion_allowed
    assert [b.code for b in result.blockers] == ["TERMINAL_STAGE"]


def test_trials_requires_fresh_backtest() -> None:
    metrics = RollupMetrics(
        trades=120, profit_factor=1.6, sharpe=0.9, max_drawdown_pct=12.0, expectancy=18.0
    )
    fresh = BacktestRollup(completed=4, last_completed_at=NOW - timedelta(days=2))
    ok = evaluate("TRIALS", metrics, "OK", backtests=fresh, as_of=NOW)
    assert ok.all_gates_passed
    assert ok.ctas[0].code == "CONVERT_TO_PAPER"

    stale = BacktestRollup(completed=4, last_completed_at=NOW - timedelta(days=10))
    result = evaluate("TRIALS", metrics, "OK", backtests=stale, as_of=NOW)
    assert result.gates["backtest_fresh"].status == "BELOW"
    assert result.promotion_allowed
    assert "RUN_BACKTEST" in [c.code for c in result.ctas]

    failed = BacktestRollup(failed=1, last_completed_at=NOW, last_status="failed")
    failed_result = evaluate("TRIALS", metrics, "OK", backtests=failed, as_of=NOW)
    assert not failed_result.gates["backtest_fresh"].passed


def test_max_drawdown_near_band() -> None:
    metrics = RollupMetrics(
        trades=25,
        win_rate=55.0,
        profit_factor=1.6,
        sharpe=1.0,
        max_drawdown_pct=18.0,
        last_trade_at=NOW,
    )
    result = evaluate("SHADOW", metrics, "OK", broker=VERIFIED, as_of=NOW)
    assert result.gates["max_drawdown"].status == "NEAR"
    worse = evaluate("SHADOW", replace(metrics, max_drawdown_pct=19.0), "OK", as_of=NOW)
    assert worse.gates["max_drawdown"].status == "BELOW"


def test_broker_sources_are_both_required() -> None:
    legacy_only = BrokerConnection(
        status="CONNECTED", last_success_at=NOW, verification="UNVERIFIED"
    )
    metrics = RollupMetrics(
        trades=25,
        win_rate=55.0,
        profit_factor=1.6,
        sharpe=1.0,
        max_drawdown_pct=10.0,
        last_trade_at=NOW,
    )
    result = evaluate("SHADOW", metrics, "OK", broker=legacy_only, as_of=NOW)
    gate = result.gates["broker_verified"]
    assert gate.value == {"legacy": True, "canonical": False}
    assert "disagree" in gate.message
    assert not result.promotion_allowed
    assert "CONNECT_BROKER" in [c.code for c in result.ctas]

    connected_without_success = BrokerConnection(status="CONNECTED", verification="VERIFIED")
    result = evaluate("SHADOW", metrics, "OK", broker=connected_without_success, as_of=NOW)
    assert result.gates["broker_verified"].value == {"legacy": False, "canonical": True}

    assert evaluate("SHADOW", metrics, "OK", broker=VERIFIED, as_of=NOW).promotion_allowed


def test_live_promotion_needs_governance_approval() -> None:
    pending = evaluate("CANARY", _canary_metrics(), "OK", broker=VERIFIED, as_of=NOW)
    assert pending.target_stage == "LIVE"
    assert pending.gates["governance_approval"].severity == "error"
    assert not pending.promotion_allowed
    assert not pending.override_required
    assert [b.code for b in pending.blockers] == ["LIVE_REQUIRES_APPROVAL"]
    assert [c.code for c in pending.ctas] == ["OPEN_AUDIT"]

    approved = evaluate(
        "CANARY",
        _canary_metrics(),
        "OK",
        broker=VERIFIED,
        governance_approved=True,
        as_of=NOW,
    )
    assert approved.all_gates_passed
    assert approved.promotion_allowed


def test_freshness_gates_fail_without_evaluation_time() -> None:
    result = evaluate("PAPER", _paper_metrics(30), "OK")
    assert result.gates["recent_activity"].status == "BELOW"
    assert result.promotion_allowed


def test_progress_and_allowed_invariants() -> None:
    rng = random.Random(21)
    tiers = ["OK", "WARN", "DEGRADED", "BLOCKED"]
    for _ in range(300):
        stage = rng.choice(STAGE_ORDER[:-1])
        metrics = RollupMetrics(
            trades=rng.randint(0, 100),
            win_rate=rng.uniform(20.0, 70.0),
            profit_factor=rng.uniform(0.5, 2.5),
            sharpe=rng.uniform(-1.0, 2.0),
            max_drawdown_pct=rng.uniform(0.0, 30.0),
            expectancy=rng.uniform(-10.0, 30.0),
            last_trade_at=NOW - timedelta(days=rng.uniform(0.0, 14.0)),
        )
        result = evaluate(
            stage,
            metrics if rng.random() > 0.1 else None,
            rng.choice(tiers),
            backtests=BacktestRollup(
                completed=3, last_completed_at=NOW - timedelta(days=rng.uniform(0.0, 10.0))
            ),
            broker=VERIFIED if rng.random() > 0.3 else None,
            governance_approved=rng.random() > 0.5,
            as_of=NOW,
        )
        gates = list(result.gates.values())
        assert (result.progress_percent == 100.0) == all(g.passed for g in gates)
        error_failed = any(g.severity == "error" and not g.passed for g in gates)
        assert result.promotion_allowed == (not error_failed)
        assert len(result.blockers) == sum(1 for g in gates if not g.passed)


def test_custom_near_band() -> None:
    cfg = PromotionConfig(near_band=0.5)
    result = evaluate("PAPER", _paper_metrics(15), "OK", as_of=NOW, config=cfg)
    assert result.gates["min_trades"].status == "NEAR"


def test_evaluate_is_idempotent() -> None:
    first = evaluate("SHADOW", _canary_metrics(), "WARN", broker=VERIFIED, as_of=NOW)
    second = evaluate("SHADOW", _canary_metrics(), "WARN", broker=VERIFIED, as_of=NOW)
    assert first == second


def test_failing_canary_cannot_reach_live() -> None:
    collapsed = RollupMetrics(
        trades=0, win_rate=0.0, profit_factor=0.1, sharpe=-2.0, max_drawdown_pct=60.0
    )
    result = evaluate(
        "CANARY", collapsed, "OK", broker=VERIFIED, governance_approved=True, as_of=NOW
    )
    assert result.target_stage == "LIVE"
    assert not result.promotion_allowed
    blocking = {g.code for g in result.failing_gates if g.severity == "error"}
    assert blocking == {"min_trades", "win_rate", "profit_factor", "sharpe", "max_drawdown"}


def test_metric_threshold_blocks_but_stale_backtest_does_not() -> None:
    weak = replace(_paper_metrics(30), profit_factor=1.1)
    result = evaluate("PAPER", weak, "OK", as_of=NOW)
    assert result.gates["profit_factor"].status == "NEAR"
    assert result.gates["profit_factor"].severity == "error"
    assert not result.promotion_allowed

    stale = BacktestRollup(completed=4, last_completed_at=NOW - timedelta(days=30))
    overridable = evaluate("PAPER", _paper_metrics(30), "OK", backtests=stale, as_of=NOW)
    assert overridable.gates["backtest_fresh"].severity == "warning"
    assert overridable.promotion_allowed
    assert overridable.override_required
