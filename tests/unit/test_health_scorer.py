import random
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from lifecycle_engine.core import blockers as bk
from lifecycle_engine.core.health_scorer import (
    HealthConfig,
    HealthThresholds,
    HealthWeights,
    aggregate_score,
    display_health_state,
    score,
)
from lifecycle_engine.core.state_classifier import classify
from lifecycle_engine.telemetry.schemas import BacktestRollup, RollupMetrics, TelemetrySnapshot

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
COMPONENTS = [
    "runner_reliability",
    "backtest_success",
    "evolution_stability",
    "promotion_readiness",
    "risk_discipline",
    "error_frequency",
]


def _healthy(**overrides: object) -> TelemetrySnapshot:
    base = TelemetrySnapshot(
        bot_id="bot-1",
        stage="PAPER",
        captured_at=NOW,
        last_heartbeat_at=NOW - timedelta(seconds=5),
        runner_status_raw="running",
        mode="SIM_LIVE",
        backtests=BacktestRollup(completed=8, failed=2),
        rollup_metrics=RollupMetrics(
            trades=30, profit_factor=1.5, expectancy=5.0, max_drawdown_pct=5.0
        ),
    )
    return replace(base, **overrides)


def test_default_weights_total_100() -> None:
    assert sum(HealthWeights().as_dict().values()) == 100.0


def test_weights_not_totalling_100_are_rejected() -> None:
    with pytest.raises(ValueError):
        HealthWeights(runner_reliability=40.0)
    with pytest.raises(ValueError):
        HealthWeights(runner_reliability=-10.0, backtest_success=60.0)


def test_aggregate_stays_in_range_for_random_inputs() -> None:
    rng = random.Random(11)
    for _ in range(500):
        raw = [rng.uniform(0.01, 1.0) for _ in COMPONENTS]
        total = sum(raw)
        weights = HealthWeights(**{n: 100.0 * r / total for n, r in zip(COMPONENTS, raw)})
        components = {n: rng.uniform(0.0, 100.0) for n in COMPONENTS}
        value = aggregate_score(components, weights)
        assert 0.0 <= value <= 100.0


def test_aggregate_clamps_out_of_range_components() -> None:
    components = {n: 250.0 for n in COMPONENTS}
    assert aggregate_score(components, HealthWeights()) == 100.0
    components = {n: -40.0 for n in COMPONENTS}
    assert aggregate_score(components, HealthWeights()) == 0.0


def test_healthy_bot_scores_high() -> None:
    snap = _healthy()
    result = score(snap, classify(snap))
    assert result.components == {
        "runner_reliability": 100.0,
        "backtest_success": 80.0,
        "evolution_stability": 100.0,
        "promotion_readiness": 100.0,
        "risk_discipline": 80.0,
        "error_frequency": 100.0,
    }
    assert result.score == 94.0
    assert result.reason_code == "OK"


def test_stalled_runner_drives_reason() -> None:
    snap = _healthy(last_heartbeat_at=NOW - timedelta(minutes=10))
    result = score(snap, classify(snap))
    assert result.components["runner_reliability"] == 20.0
    assert result.score == 70.0
    assert result.reason_code == "STALE_HEARTBEAT"
    assert "No heartbeat" in result.reason


def test_weakest_component_reported_without_critical_blockers() -> None:
    snap = _healthy(evolution_rollbacks=3)
    result = score(snap, classify(snap))
    assert result.components["evolution_stability"] == 25.0
    assert result.reason_code == "EVOLUTION_ROLLBACKS"


def test_runner_component_by_stage() -> None:
    trials = _healthy(stage="TRIALS", runner_status_raw=None, mode="BACKTEST_ONLY")
    assert score(trials, classify(trials)).components["runner_reliability"] == 100.0

    paper = _healthy(runner_status_raw=None)
    result = score(paper, classify(paper))
    assert result.components["runner_reliability"] == 0.0
    assert result.reason_code == "NO_RUNNER"


def test_heartbeat_warning_penalty() -> None:
    snap = _healthy(last_heartbeat_at=NOW - timedelta(seconds=90))
    assert score(snap, classify(snap)).components["runner_reliability"] == 85.0


def test_sub_scores_defaults_and_floors() -> None:
    snap = _healthy(
        backtests=BacktestRollup(),
        consecutive_failures=9,
        rollup_metrics=RollupMetrics(trades=0, max_drawdown_pct=40.0),
    )
    components = score(snap, classify(snap)).components
    assert components["backtest_success"] == 50.0
    assert components["error_frequency"] == 0.0
    assert components["promotion_readiness"] == 0.0
    assert components["risk_discipline"] == 0.0


def test_display_state_lookup() -> None:
    critical = [bk.runner_error(0)]
    warning = [bk.heartbeat_warning(70.0, 60.0)]
    assert display_health_state(85.0, []) == "OK"
    assert display_health_state(80.0, warning) == "OK"
    assert display_health_state(85.0, critical) == "BLOCKED"
    assert display_health_state(79.9, critical) == "WARN"
    assert display_health_state(60.0, []) == "WARN"
    assert display_health_state(59.9, []) == "DEGRADED"


def test_critical_blocker_never_displays_ok() -> None:
    rng = random.Random(3)
    critical = [bk.runner_stalled(None, 120.0)]
    for _ in range(200):
        value = rng.uniform(80.0, 100.0)
        assert display_health_state(value, critical) == "BLOCKED"


def test_display_thresholds_are_configurable() -> None:
    thresholds = HealthThresholds(ok=90.0, warn=70.0)
    assert display_health_state(85.0, [], thresholds) == "WARN"
    with pytest.raises(ValueError):
        HealthThresholds(ok=50.0, warn=70.0)


def test_readiness_follows_configured_trade_targets() -> None:
    snap = _healthy()
    classified = classify(snap)
    default = score(snap, classified)
    stricter = score(snap, classified, HealthConfig(min_trades={"PAPER": 60}))
    assert default.components["promotion_readiness"] == 100.0
    assert stricter.components["promotion_readiness"] == 70.0
    assert stricter.score == round(default.score - 4.5, 1)
