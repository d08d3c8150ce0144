from dataclasses import replace
from datetime import UTC, datetime, timedelta

from lifecycle_engine.core.canonical_state import evaluate_bot_state
from lifecycle_engine.observability.fleet import summarize_fleet
from lifecycle_engine.telemetry.schemas import BacktestRollup, RollupMetrics, TelemetrySnapshot

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)


def _snapshot(bot_id: str, **overrides: object) -> TelemetrySnapshot:
    base = TelemetrySnapshot(
        bot_id=bot_id,
        stage="PAPER",
        captured_at=NOW,
        last_heartbeat_at=NOW - timedelta(seconds=5),
        runner_status_raw="running",
        mode="SIM_LIVE",
        backtests=BacktestRollup(completed=8, failed=2),
        rollup_metrics=RollupMetrics(trades=30, max_drawdown_pct=5.0),
    )
    return replace(base, **overrides)


def test_fleet_summary_counts() -> None:
    states = [
        evaluate_bot_state(_snapshot("a")),
        evaluate_bot_state(_snapshot("b", last_heartbeat_at=NOW - timedelta(minutes=10))),
        evaluate_bot_state(_snapshot("c", last_heartbeat_at=None)),
        evaluate_bot_state(_snapshot("d", stage="TRIALS", runner_status_raw=None)),
    ]
    summary = summarize_fleet(states, worst_n=2)

    assert summary.bot_count == 4
    assert summary.by_runner_state["STALLED"] == 2
    assert summary.by_runner_state["SCANNING"] == 1
    assert summary.by_runner_state["NO_RUNNER"] == 1
    assert summary.by_stage == {"PAPER": 3, "TRIALS": 1}
    assert summary.critical_bot_count == 2
    assert summary.auto_healable_count == 2
    assert summary.top_blockers[0] == ("RUNNER_STALLED", 2)
    assert len(summary.lowest_health) == 2
    assert {bot for bot, _ in summary.lowest_health} == {"b", "c"}
    expected_mean = round(sum(s.health_score for s in states) / 4, 1)
    assert summary.mean_health_score == expected_mean


def test_empty_fleet() -> None:
    summary = summarize_fleet([])
    assert summary.bot_count == 0
    assert summary.mean_health_score == 0.0
    assert summary.top_blockers == []
    assert summary.lowest_health == []
