"""Blocker kinds raised by the lifecycle engine.

Each blocker kind has a fixed severity, category, remediation hint and
auto-heal flag, recorded once in ``BLOCKER_KINDS``. The constructor functions
below are the only way kind-specific evidence gets attached, so every kind is
built with the fields it needs.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from lifecycle_engine.core.types import SEVERITY_RANK, Category, Severity, Stage


@dataclass(frozen=True)
class BlockerKind:
    severity: Severity
    category: Category
    suggested_action: str
    auto_healable: bool


@dataclass(frozen=True)
class Blocker:
    code: str
    severity: Severity
    message: str
    suggested_action: str
    auto_healable: bool
    category: Category
    evidence: tuple[tuple[str, object], ...] = ()

    @property
    def is_critical(self) -> bool:
        return self.severity == "CRITICAL"


BLOCKER_KINDS: dict[str, BlockerKind] = {
    "CIRCUIT_BREAKER_OPEN": BlockerKind(
        "CRITICAL", "runner", "Wait for cooldown or manually reset", False
    ),
    "RUNNER_AUTO_PAUSED": BlockerKind(
        "CRITICAL", "runner", "Check logs and restart manually", False
    ),
    "RUNNER_ERROR": BlockerKind("CRITICAL", "runner", "Check logs and restart runner", True),
    "RUNNER_STALLED": BlockerKind("CRITICAL", "runner", "Auto-restart queued", True),
    "UNKNOWN_RUNNER_STATUS": BlockerKind(
        "CRITICAL", "runner", "Check runner version and logs", False
    ),
    "RUNNER_HEARTBEAT_WARNING": BlockerKind("WARNING", "runner", "Monitor for stall", False),
    "DATA_FROZEN": BlockerKind("WARNING", "data", "Check market data feed", True),
    "NO_PRIMARY_RUNNER": BlockerKind("CRITICAL", "runner", "Start runner", True),
    "MODE_STAGE_MISMATCH": BlockerKind("CRITICAL", "eligibility", "Fix execution mode", True),
    "TRIALS_RUNNER_ACTIVE": BlockerKind("WARNING", "runner", "Stop runner", True),
    "TRADING_DISABLED_RUNNER_ACTIVE": BlockerKind(
        "WARNING", "runner", "Pause or stop the runner", True
    ),
    "ACCOUNT_BLOWN": BlockerKind(
        "CRITICAL", "capital", "Reset account and demote to TRIALS", False
    ),
    "KILL_SWITCH_ENGAGED": BlockerKind(
        "CRITICAL", "risk", "Review daily loss before resuming", False
    ),
    "TERMINAL_STAGE": BlockerKind("INFO", "eligibility", "No further promotion available", False),
}


def make_blocker(
    code: str, message: str, evidence: Iterable[tuple[str, object]] = ()
) -> Blocker:
    kind = BLOCKER_KINDS.get(code)
    if kind is None:
        raise ValueError(f"Unknown blocker code: {code}")
    return Blocker(
        code=code,
        severity=kind.severity,
        message=message,
        suggested_action=kind.suggested_action,
        auto_healable=kind.auto_healable,
        category=kind.category,
        evidence=tuple(evidence),
    )


def circuit_breaker_open(restart_count: int, max_restarts: int, breaker_open: bool) -> Blocker:
    if breaker_open:
        message = "Circuit breaker is open"
    else:
        message = f"Runner restarted {restart_count} times (limit {max_restarts})"
    return make_blocker(
        "CIRCUIT_BREAKER_OPEN",
        message,
        (("restart_count", restart_count), ("max_restarts", max_restarts)),
    )


def runner_auto_paused(consecutive_failures: int) -> Blocker:
    return make_blocker(
        "RUNNER_AUTO_PAUSED",
        f"Runner auto-paused after {consecutive_failures} consecutive failures",
        (("consecutive_failures", consecutive_failures),),
    )


def runner_error(consecutive_failures: int) -> Blocker:
    return make_blocker(
        "RUNNER_ERROR",
        "Runner reported an error",
        (("consecutive_failures", consecutive_failures),),
    )


def runner_stalled(heartbeat_age_s: float | None, threshold_s: float) -> Blocker:
    if heartbeat_age_s is None:
        message = "No heartbeat received"
    else:
        message = f"No heartbeat for {heartbeat_age_s:.0f}s (threshold {threshold_s:.0f}s)"
    return make_blocker(
        "RUNNER_STALLED",
        message,
        (("heartbeat_age_s", heartbeat_age_s), ("threshold_s", threshold_s)),
    )


def unknown_runner_status(runner_status: str) -> Blocker:
    return make_blocker(
        "UNKNOWN_RUNNER_STATUS",
        f"Runner reported unrecognised status '{runner_status}'",
        (("runner_status", runner_status),),
    )


def heartbeat_warning(heartbeat_age_s: float, threshold_s: float) -> Blocker:
    return make_blocker(
        "RUNNER_HEARTBEAT_WARNING",
        f"Heartbeat is {heartbeat_age_s:.0f}s old",
        (("heartbeat_age_s", heartbeat_age_s), ("threshold_s", threshold_s)),
    )


def data_frozen(quote_age_s: float | None) -> Blocker:
    if quote_age_s is None:
        message = "Runner reports frozen market data"
    else:
        message = f"Market data is {quote_age_s:.0f}s old"
    return make_blocker("DATA_FROZEN", message, (("quote_age_s", quote_age_s),))


def no_primary_runner(stage: Stage) -> Blocker:
    return make_blocker(
        "NO_PRIMARY_RUNNER",
        f"{stage} bot has trading enabled but no runner",
        (("stage", stage),),
    )


def mode_stage_mismatch(stage: Stage, mode: str, valid_modes: Sequence[str]) -> Blocker:
    return make_blocker(
        "MODE_STAGE_MISMATCH",
        f"Mode {mode} is not valid for {stage} (expected {'/'.join(valid_modes)})",
        (("stage", stage), ("mode", mode), ("valid_modes", tuple(valid_modes))),
    )


def trials_runner_active(runner_status: str) -> Blocker:
    return make_blocker(
        "TRIALS_RUNNER_ACTIVE",
        "TRIALS bots do not use runners",
        (("runner_status", runner_status),),
    )


def trading_disabled_runner_active(runner_status: str) -> Blocker:
    return make_blocker(
        "TRADING_DISABLED_RUNNER_ACTIVE",
        "Trading is disabled but the runner is active",
        (("runner_status", runner_status),),
    )


def account_blown(equity: float) -> Blocker:
    return make_blocker(
        "ACCOUNT_BLOWN",
        f"Account balance ${equity:,.2f} is at or below zero",
        (("equity", equity),),
    )


def kill_switch_engaged(daily_pnl: float, limit_dollars: float) -> Blocker:
    return make_blocker(
        "KILL_SWITCH_ENGAGED",
        f"Daily loss ${-daily_pnl:,.2f} reached limit ${limit_dollars:,.2f}",
        (("daily_pnl", daily_pnl), ("limit_dollars", limit_dollars)),
    )


def terminal_stage(stage: Stage) -> Blocker:
    return make_blocker("TERMINAL_STAGE", f"{stage} is the final stage", (("stage", stage),))


def sort_blockers(blockers: Iterable[Blocker]) -> tuple[Blocker, ...]:
    return tuple(sorted(blockers, key=lambda b: -SEVERITY_RANK[b.severity]))


def has_critical(blockers: Iterable[Blocker]) -> bool:
    return any(b.is_critical for b in blockers)


def primary_blocker(blockers: Iterable[Blocker]) -> Blocker | None:
    ordered = sort_blockers(blockers)
    return ordered[0] if ordered else None
