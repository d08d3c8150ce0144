from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from lifecycle_engine.core.types import Category, GateStatus, Severity, Stage
from lifecycle_engine.telemetry.schemas import RollupMetrics

GateSeverity = Literal["error", "warning", "info"]

# Trades required in a stage before promotion out of it. Consumers depend on these exact values.
MIN_TRADES_BY_STAGE: dict[Stage, int | None] = {
    "TRIALS": None,
    "PAPER": 30,
    "SHADOW": 25,
    "CANARY": 60,
    "LIVE": None,
}

GATE_SEVERITY_TO_BLOCKER: dict[GateSeverity, Severity] = {
    "error": "CRITICAL",
    "warning": "WARNING",
    "info": "INFO",
}


@dataclass(frozen=True)
class StageGateConfig:
    min_win_rate: float | None = None
    min_profit_factor: float | None = None
    min_sharpe: float | None = None
    max_drawdown_pct: float | None = None
    min_expectancy: float | None = None
    max_consecutive_losing_days: int | None = None
    require_backtest: bool = False
    require_approval: bool = False


@dataclass(frozen=True)
class GateResult:
    code: str
    label: str
    category: Category
    severity: GateSeverity
    value: object
    required: object
    status: GateStatus
    message: str

    @property
    def passed(self) -> bool:
        return self.status == "PASSED"


def bucket_at_least(value: float | None, threshold: float, near_band: float) -> GateStatus:
    if value is None:
        return "BELOW"
    if value >= threshold:
        return "PASSED"
    if value >= near_band * threshold:
        return "NEAR"
    return "BELOW"


def bucket_at_most(value: float | None, limit: float, near_band: float) -> GateStatus:
    if value is None:
        return "BELOW"
    if value <= limit:
        return "PASSED"
    if near_band > 0 and value <= limit / near_band:
        return "NEAR"
    return "BELOW"


def _fmt(value: float | None) -> str:
    return "n/a" if value is None else f"{value:g}"


def at_least_gate(
    code: str,
    label: str,
    category: Category,
    severity: GateSeverity,
    value: float | None,
    threshold: float,
    near_band: float,
) -> GateResult:
    status = bucket_at_least(value, threshold, near_band)
    return GateResult(
        code=code,
        label=label,
        category=category,
        severity=severity,
        value=value,
        required=threshold,
        status=status,
        message=f"{label} {_fmt(value)} (need >= {threshold:g})",
    )


def at_most_gate(
    code: str,
    label: str,
    category: Category,
    severity: GateSeverity,
    value: float | None,
    limit: float,
    near_band: float,
) -> GateResult:
    status = bucket_at_most(value, limit, near_band)
    return GateResult(
        code=code,
        label=label,
        category=category,
        severity=severity,
        value=value,
        required=limit,
        status=status,
        message=f"{label} {_fmt(value)} (need <= {limit:g})",
    )


def check_gate(
    code: str,
    label: str,
    category: Category,
    severity: GateSeverity,
    ok: bool,
    value: object,
    required: object,
    message: str,
) -> GateResult:
    return GateResult(
        code=code,
        label=label,
        category=category,
        severity=severity,
        value=value,
        required=required,
        status="PASSED" if ok else "BELOW",
        message=message,
    )


def metric_gates(
    metrics: RollupMetrics,
    cfg: StageGateConfig,
    near_band: float,
    severity: GateSeverity = "error",
) -> list[GateResult]:
    losing_days_limit = (
        None if cfg.max_consecutive_losing_days is None else float(cfg.max_consecutive_losing_days)
    )
    # (code, label, category, value, threshold, higher_is_better)
    specs: tuple[tuple[str, str, Category, float | None, float | None, bool], ...] = (
        ("win_rate", "Win rate %", "performance", metrics.win_rate, cfg.min_win_rate, True),
        (
            "profit_factor",
            "Profit factor",
            "performance",
            metrics.profit_factor,
            cfg.min_profit_factor,
            True,
        ),
        ("sharpe", "Sharpe", "performance", metrics.sharpe, cfg.min_sharpe, True),
        (
            "max_drawdown",
            "Max drawdown %",
            "risk",
            metrics.max_drawdown_pct,
            cfg.max_drawdown_pct,
            False,
        ),
        ("expectancy", "Expectancy", "performance", metrics.expectancy, cfg.min_expectancy, True),
        (
            "consecutive_losing_days",
            "Consecutive losing days",
            "risk",
            float(metrics.consecutive_losing_days),
            losing_days_limit,
            False,
        ),
    )

    gates: list[GateResult] = []
    for code, label, category, value, threshold, higher_is_better in specs:
        if threshold is None:
            continue
        build = at_least_gate if higher_is_better else at_most_gate
        gates.append(build(code, label, category, severity, value, threshold, near_band))
    return gates
