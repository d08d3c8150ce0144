from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields

from lifecycle_engine.core.blockers import Blocker, has_critical
from lifecycle_engine.core.state_classifier import Classification
from lifecycle_engine.core.types import HealthState, RunnerState, Stage
from lifecycle_engine.promotion.gates import MIN_TRADES_BY_STAGE
from lifecycle_engine.telemetry.schemas import TelemetrySnapshot


@dataclass(frozen=True)
class HealthWeights:
    runner_reliability: float = 30.0
    backtest_success: float = 20.0
    evolution_stability: float = 20.0
    promotion_readiness: float = 15.0
    risk_discipline: float = 10.0
    error_frequency: float = 5.0

    def __post_init__(self) -> None:
        values = self.as_dict()
        if any(v < 0 for v in values.values()):
            raise ValueError("Health weights must be non-negative")
        total = sum(values.values())
        if abs(total - 100.0) > 1e-9:
            raise ValueError(f"Health weights must total 100, got {total:g}")

    def as_dict(self) -> dict[str, float]:
        return {f.name: float(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class HealthThresholds:
    ok: float = 80.0
    warn: float = 60.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.warn <= self.ok <= 100.0:
            raise ValueError("Health thresholds must satisfy 0 <= warn <= ok <= 100")


@dataclass(frozen=True)
class HealthConfig:
    weights: HealthWeights = field(default_factory=HealthWeights)
    thresholds: HealthThresholds = field(default_factory=HealthThresholds)
    heartbeat_warning_penalty: float = 15.0
    rollback_penalty: float = 25.0
    failure_penalty: float = 20.0
    drawdown_ceiling_pct: float = 25.0
    empty_backtest_score: float = 50.0
    min_trades: dict[Stage, int | None] = field(
        default_factory=lambda: dict(MIN_TRADES_BY_STAGE)
    )


@dataclass(frozen=True)
class HealthScore:
    score: float
    reason: str
    reason_code: str
    components: dict[str, float]


_RUNNER_RELIABILITY: dict[RunnerState, float] = {
    "SCANNING": 100.0,
    "SIGNAL": 100.0,
    "TRADING": 100.0,
    "STARTING": 80.0,
    "MAINTENANCE": 80.0,
    "PAUSED": 70.0,
    "RESTARTING": 50.0,
    "STOPPED": 50.0,
    "DATA_FROZEN": 40.0,
    "STALLED": 20.0,
    "ERROR": 10.0,
    "CIRCUIT_BREAK": 0.0,
    "NO_RUNNER": 0.0,
}

# Health reason codes keyed by blocker code, for critical blockers that explain a low score.
_BLOCKER_REASON_CODES: dict[str, str] = {
    "RUNNER_STALLED": "STALE_HEARTBEAT",
    "CIRCUIT_BREAKER_OPEN": "CIRCUIT_BREAKER",
    "RUNNER_AUTO_PAUSED": "CIRCUIT_BREAKER",
    "NO_PRIMARY_RUNNER": "NO_RUNNER",
    "RUNNER_ERROR": "FREQUENT_ERRORS",
}

_COMPONENT_REASONS: dict[str, tuple[str, str]] = {
    "runner_reliability": ("STALE_HEARTBEAT", "Runner unreliable"),
    "backtest_success": ("BACKTEST_FAILURES", "Backtests failing"),
    "evolution_stability": ("EVOLUTION_ROLLBACKS", "Evolution rollbacks"),
    "promotion_readiness": ("PROMOTION_FAILURES", "Not ready for promotion"),
    "risk_discipline": ("HIGH_DRAWDOWN", "Drawdown too high"),
    "error_frequency": ("FREQUENT_ERRORS", "Frequent errors"),
}


def _clamp100(value: float) -> float:
    return max(0.0, min(100.0, value))


def component_scores(
    snapshot: TelemetrySnapshot, classified: Classification, cfg: HealthConfig
) -> dict[str, float]:
    runner = _RUNNER_RELIABILITY.get(classified.runner_state, 0.0)
    if classified.runner_state == "NO_RUNNER" and snapshot.stage == "TRIALS":
        runner = 100.0
    if classified.heartbeat_warning:
        runner -= cfg.heartbeat_warning_penalty

    bt = snapshot.backtests
    bt_total = bt.completed + bt.failed
    backtest = 100.0 * bt.completed / bt_total if bt_total > 0 else cfg.empty_backtest_score

    evolution = 100.0 - cfg.rollback_penalty * snapshot.evolution_rollbacks

    readiness = 0.0
    metrics = snapshot.rollup_metrics
    if metrics is not None and metrics.trades > 0:
        target = cfg.min_trades.get(snapshot.stage)
        progress = 1.0 if not target else min(1.0, metrics.trades / target)
        readiness = 60.0 * progress
        if metrics.profit_factor is not None and metrics.profit_factor >= 1.0:
            readiness += 20.0
        if metrics.expectancy is not None and metrics.expectancy >= 0.0:
            readiness += 20.0

    drawdown = 0.0
    if metrics is not None and metrics.max_drawdown_pct is not None:
        drawdown = abs(metrics.max_drawdown_pct)
    risk = 100.0 * (1.0 - drawdown / cfg.drawdown_ceiling_pct)

    errors = 100.0 - cfg.failure_penalty * snapshot.consecutive_failures

    return {
        "runner_reliability": _clamp100(runner),
        "backtest_success": _clamp100(backtest),
        "evolution_stability": _clamp100(evolution),
        "promotion_readiness": _clamp100(readiness),
        "risk_discipline": _clamp100(risk),
        "error_frequency": _clamp100(errors),
    }


def aggregate_score(components: Mapping[str, float], weights: HealthWeights) -> float:
    total = 0.0
    for name, weight in weights.as_dict().items():
        total += weight * _clamp100(components.get(name, 0.0))
    return round(total / 100.0, 1)


def score(
    snapshot: TelemetrySnapshot,
    classified: Classification,
    config: HealthConfig | None = None,
) -> HealthScore:
    cfg = config or HealthConfig()
    components = component_scores(snapshot, classified, cfg)
    value = aggregate_score(components, cfg.weights)

    for blocker in classified.blockers:
        if blocker.is_critical:
            code = _BLOCKER_REASON_CODES.get(blocker.code, blocker.code)
            return HealthScore(value, blocker.message, code, components)

    weakest = min(components, key=lambda name: components[name])
    if components[weakest] < cfg.thresholds.ok:
        code, label = _COMPONENT_REASONS[weakest]
        if weakest == "runner_reliability" and classified.runner_state == "NO_RUNNER":
            code = "NO_RUNNER"
        reason = f"{label} ({components[weakest]:.0f}/100)"
        return HealthScore(value, reason, code, components)

    return HealthScore(value, "All components healthy", "OK", components)


def display_health_state(
    health_score: float,
    blockers: Iterable[Blocker],
    thresholds: HealthThresholds | None = None,
) -> HealthState:
    limits = thresholds or HealthThresholds()
    if health_score >= limits.ok:
        return "BLOCKED" if has_critical(blockers) else "OK"
    if health_score >= limits.warn:
        return "WARN"
    return "DEGRADED"
