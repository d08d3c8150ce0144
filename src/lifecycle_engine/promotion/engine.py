"""Promotion gate evaluation.

Every gate for the next stage is evaluated and merged into one ordered map.
Gates of severity ``error`` block promotion: trade count, per-stage metric
thresholds, health, critical blockers, broker verification and, for LIVE,
governance approval. ``warning`` gates (backtest freshness, recent activity)
count against progress and produce a call to action but can be overridden.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from lifecycle_engine.core.blockers import Blocker, terminal_stage
from lifecycle_engine.core.canonical_state import CanonicalBotState
from lifecycle_engine.core.types import HealthState, Stage, next_stage
from lifecycle_engine.promotion.gates import (
    GATE_SEVERITY_TO_BLOCKER,
    MIN_TRADES_BY_STAGE,
    GateResult,
    StageGateConfig,
    at_least_gate,
    check_gate,
    metric_gates,
)
from lifecycle_engine.telemetry.schemas import (
    BacktestRollup,
    BrokerConnection,
    RollupMetrics,
    TelemetrySnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_STAGE_GATES: dict[Stage, StageGateConfig] = {
    "TRIALS": StageGateConfig(
        min_profit_factor=1.2,
        min_sharpe=0.5,
        max_drawdown_pct=20.0,
        min_expectancy=10.0,
        require_backtest=True,
    ),
    "PAPER": StageGateConfig(min_win_rate=45.0, min_profit_factor=1.2),
    "SHADOW": StageGateConfig(
        min_win_rate=50.0, min_profit_factor=1.4, min_sharpe=0.8, max_drawdown_pct=15.0
    ),
    "CANARY": StageGateConfig(
        min_win_rate=48.0,
        min_profit_factor=1.5,
        min_sharpe=1.0,
        max_drawdown_pct=10.0,
        require_approval=True,
    ),
    "LIVE": StageGateConfig(),
}

BROKER_REQUIRED_TARGETS: frozenset[str] = frozenset({"CANARY", "LIVE"})
UNHEALTHY_TIERS: frozenset[str] = frozenset({"DEGRADED", "BLOCKED"})


@dataclass(frozen=True)
class CallToAction:
    code: str
    label: str


CTAS: dict[str, CallToAction] = {
    "CONVERT_TO_PAPER": CallToAction("CONVERT_TO_PAPER", "Convert to Simulation (Paper)"),
    "OPEN_AUDIT": CallToAction("OPEN_AUDIT", "Open Audit Checklist"),
    "RUN_BACKTEST": CallToAction("RUN_BACKTEST", "Run Backtest"),
    "VIEW_HEALTH": CallToAction("VIEW_HEALTH", "View Health Issues"),
    "CONNECT_BROKER": CallToAction("CONNECT_BROKER", "Connect Broker"),
}

GATE_CTAS: dict[str, str] = {
    "metrics_available": "RUN_BACKTEST",
    "backtest_fresh": "RUN_BACKTEST",
    "broker_verified": "CONNECT_BROKER",
    "health": "VIEW_HEALTH",
    "critical_blockers": "VIEW_HEALTH",
    "governance_approval": "OPEN_AUDIT",
}
FALLBACK_CTA = "OPEN_AUDIT"

GATE_REASON_CODES: dict[str, str] = {
    "metrics_available": "NO_METRICS",
    "min_trades": "INSUFFICIENT_TRADES",
    "health": "DEGRADED_HEALTH",
    "critical_blockers": "CRITICAL_BLOCKERS",
    "backtest_fresh": "STALE_BACKTEST",
    "win_rate": "LOW_WIN_RATE",
    "profit_factor": "LOW_PROFIT_FACTOR",
    "sharpe": "LOW_SHARPE",
    "max_drawdown": "HIGH_DRAWDOWN",
    "expectancy": "LOW_EXPECTANCY",
    "recent_activity": "NO_RECENT_ACTIVITY",
    "broker_verified": "NO_BROKER_CONNECTION",
    "governance_approval": "LIVE_REQUIRES_APPROVAL",
}


@dataclass(frozen=True)
class PromotionConfig:
    stage_gates: dict[Stage, StageGateConfig] = field(
        default_factory=lambda: dict(DEFAULT_STAGE_GATES)
    )
    min_trades: dict[Stage, int | None] = field(
        default_factory=lambda: dict(MIN_TRADES_BY_STAGE)
    )
    near_band: float = 0.8
    backtest_max_age_days: float = 7.0
    recent_activity_days: float = 7.0

    def __post_init__(self) -> None:
        if not 0.0 < self.near_band <= 1.0:
            raise ValueError("near_band must be in (0, 1]")


@dataclass(frozen=True)
class PromotionEvaluation:
    stage: Stage
    target_stage: Stage | None
    gates: dict[str, GateResult]
    progress_percent: float
    promotion_allowed: bool
    all_gates_passed: bool
    override_required: bool
    blockers: tuple[Blocker, ...]
    ctas: tuple[CallToAction, ...]
    bucket: str

    @property
    def failing_gates(self) -> tuple[GateResult, ...]:
        return tuple(g for g in self.gates.values() if not g.passed)


def _backtest_gate(
    backtests: BacktestRollup | None, as_of: datetime | None, max_age_days: float
) -> GateResult:
    def _gate(ok: bool, value: object, message: str) -> GateResult:
        return check_gate(
            "backtest_fresh", "Backtest fresh", "data", "warning", ok, value, max_age_days, message
        )

    if backtests is None or backtests.last_completed_at is None:
        return _gate(False, None, "No completed backtest")
    if (backtests.last_status or "completed").lower() != "completed":
        return _gate(False, backtests.last_status, f"Last backtest {backtests.last_status}")
    if as_of is None:
        return _gate(False, None, "Backtest age unknown without an evaluation time")
    age_days = (as_of - backtests.last_completed_at) / timedelta(days=1)
    return _gate(
        age_days <= max_age_days,
        round(age_days, 2),
        f"Last backtest {age_days:.1f} days old (max {max_age_days:g})",
    )


def _recent_activity_gate(
    metrics: RollupMetrics, as_of: datetime | None, window_days: float
) -> GateResult:
    def _gate(ok: bool, value: object, message: str) -> GateResult:
        return check_gate(
            "recent_activity",
            "Recent activity",
            "performance",
            "warning",
            ok,
            value,
            window_days,
            message,
        )

    if metrics.last_trade_at is None or as_of is None:
        return _gate(False, None, "No recent trade on record")
    idle_days = (as_of - metrics.last_trade_at) / timedelta(days=1)
    return _gate(
        idle_days <= window_days,
        round(idle_days, 2),
        f"Last trade {idle_days:.1f} days ago (max {window_days:g})",
    )


def _broker_gate(broker: BrokerConnection | None) -> GateResult:
    legacy = broker.legacy_verified if broker is not None else False
    canonical = broker.canonical_verified if broker is not None else False
    ok = legacy and canonical
    if broker is None:
        message = "No broker connection"
    elif ok:
        message = "Broker verified"
    elif legacy != canonical:
        message = f"Broker verification sources disagree (legacy={legacy}, canonical={canonical})"
    else:
        message = "Broker not verified"
    value = {"legacy": legacy, "canonical": canonical}
    return check_gate(
        "broker_verified", "Broker verified", "capital", "error", ok, value, True, message
    )


def _gate_blocker(gate: GateResult) -> Blocker:
    cta = CTAS[GATE_CTAS.get(gate.code, FALLBACK_CTA)]
    return Blocker(
        code=GATE_REASON_CODES.get(gate.code, gate.code.upper()),
        severity=GATE_SEVERITY_TO_BLOCKER[gate.severity],
        message=gate.message,
        suggested_action=cta.label,
        auto_healable=False,
        category=gate.category,
    )


def _grade(progress: float, all_passed: bool, has_metrics: bool) -> str:
    if not has_metrics:
        return "UNRATED"
    if all_passed:
        return "A+"
    if progress >= 80.0:
        return "A"
    if progress >= 60.0:
        return "B"
    if progress >= 40.0:
        return "C"
    return "D"


def build_gates(
    stage: Stage,
    rollup_metrics: RollupMetrics | None,
    health_tier: HealthState,
    *,
    blockers: Iterable[Blocker] = (),
    backtests: BacktestRollup | None = None,
    broker: BrokerConnection | None = None,
    governance_approved: bool = False,
    as_of: datetime | None = None,
    config: PromotionConfig | None = None,
) -> dict[str, GateResult]:
    cfg = config or PromotionConfig()
    target = next_stage(stage)
    if target is None:
        return {}
    stage_cfg = cfg.stage_gates.get(stage, StageGateConfig())
    critical = [b.code for b in blockers if b.is_critical]
    has_metrics = rollup_metrics is not None
    metrics = rollup_metrics or RollupMetrics(trades=0)

    gates: list[GateResult] = [
        check_gate(
            "metrics_available",
            "Metrics available",
            "data",
            "error",
            has_metrics,
            has_metrics,
            True,
            "Rollup metrics available" if has_metrics else "No rollup metrics",
        )
    ]

    min_trades = cfg.min_trades.get(stage)
    if min_trades:
        gates.append(
            at_least_gate(
                "min_trades",
                "Trades",
                "performance",
                "error",
                float(metrics.trades),
                float(min_trades),
                cfg.near_band,
            )
        )

    gates.append(
        check_gate(
            "health",
            "Health",
            "eligibility",
            "error",
            health_tier not in UNHEALTHY_TIERS,
            health_tier,
            "OK or WARN",
            f"Health is {health_tier}",
        )
    )
    gates.append(
        check_gate(
            "critical_blockers",
            "No critical blockers",
            "eligibility",
            "error",
            not critical,
            len(critical),
            0,
            f"Critical: {', '.join(critical)}" if critical else "No critical blockers",
        )
    )

    if stage_cfg.require_backtest or backtests is not None:
        gates.append(_backtest_gate(backtests, as_of, cfg.backtest_max_age_days))

    gates.extend(metric_gates(metrics, stage_cfg, cfg.near_band))

    # TRIALS bots trade only in backtests, so there is no live activity to check.
    if stage != "TRIALS":
        gates.append(_recent_activity_gate(metrics, as_of, cfg.recent_activity_days))

    if target in BROKER_REQUIRED_TARGETS:
        gates.append(_broker_gate(broker))

    if stage_cfg.require_approval or target == "LIVE":
        gates.append(
            check_gate(
                "governance_approval",
                "Governance approval",
                "eligibility",
                "error" if target == "LIVE" else "info",
                governance_approved,
                governance_approved,
                True,
                "Approved" if governance_approved else f"{target} requires governance approval",
            )
        )

    return {gate.code: gate for gate in gates}


def evaluate(
    stage: Stage,
    rollup_metrics: RollupMetrics | None,
    health_tier: HealthState,
    *,
    blockers: Iterable[Blocker] = (),
    backtests: BacktestRollup | None = None,
    broker: BrokerConnection | None = None,
    governance_approved: bool = False,
    as_of: datetime | None = None,
    config: PromotionConfig | None = None,
) -> PromotionEvaluation:
    target = next_stage(stage)
    if target is None:
        return PromotionEvaluation(
            stage=stage,
            target_stage=None,
            gates={},
            progress_percent=0.0,
            promotion_allowed=False,
            all_gates_passed=False,
            override_required=False,
            blockers=(terminal_stage(stage),),
            ctas=(),
            bucket=_grade(0.0, False, rollup_metrics is not None),
        )

    gates = build_gates(
        stage,
        rollup_metrics,
        health_tier,
        blockers=blockers,
        backtests=backtests,
        broker=broker,
        governance_approved=governance_approved,
        as_of=as_of,
        config=config,
    )
    passed = sum(1 for g in gates.values() if g.passed)
    total = len(gates)
    progress = 100.0 * passed / total if total else 0.0
    all_passed = passed == total
    allowed = not any(g.severity == "error" and not g.passed for g in gates.values())

    failing = [g for g in gates.values() if not g.passed]
    cta_codes: list[str] = []
    for gate in failing:
        code = GATE_CTAS.get(gate.code, FALLBACK_CTA)
        if code not in cta_codes:
            cta_codes.append(code)
    if stage == "TRIALS" and allowed:
        cta_codes.insert(0, "CONVERT_TO_PAPER")

    if not allowed:
        logger.debug(
            "promotion %s -> %s blocked by %s",
            stage,
            target,
            [g.code for g in failing if g.severity == "error"],
        )

    return PromotionEvaluation(
        stage=stage,
        target_stage=target,
        gates=gates,
        progress_percent=progress,
        promotion_allowed=allowed,
        all_gates_passed=all_passed,
        override_required=allowed and not all_passed,
        blockers=tuple(_gate_blocker(g) for g in failing),
        ctas=tuple(CTAS[c] for c in cta_codes),
        bucket=_grade(progress, all_passed, rollup_metrics is not None),
    )


def evaluate_snapshot(
    snapshot: TelemetrySnapshot,
    state: CanonicalBotState,
    *,
    governance_approved: bool = False,
    config: PromotionConfig | None = None,
) -> PromotionEvaluation:
    return evaluate(
        snapshot.stage,
        snapshot.rollup_metrics,
        state.health_state,
        blockers=state.blockers,
        backtests=snapshot.backtests,
        broker=snapshot.broker,
        governance_approved=governance_approved,
        as_of=snapshot.captured_at,
        config=config,
    )
