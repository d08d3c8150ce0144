"""Telemetry -> runner/job/evolution state classification.

The classifier is a pure function of one snapshot. Anything stateful across
ticks (the restart count feeding the circuit breaker) arrives already
accumulated in the snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from lifecycle_engine.core import blockers as bk
from lifecycle_engine.core.blockers import Blocker
from lifecycle_engine.core.types import (
    VALID_MODES_BY_STAGE,
    EvolutionState,
    JobState,
    RunnerState,
)
from lifecycle_engine.telemetry.schemas import JobsSummary, TelemetrySnapshot

logger = logging.getLogger(__name__)

_ACTIVITY_STATES: dict[str, RunnerState] = {
    "TRADING": "TRADING",
    "SIGNAL": "SIGNAL",
    "SCANNING": "SCANNING",
}
_RUNNER_ALIVE = {"running", "starting", "restarting", "data_frozen"}


@dataclass(frozen=True)
class ClassifierConfig:
    heartbeat_stale_s: float = 120.0
    heartbeat_warning_s: float = 60.0
    data_frozen_s: float = 300.0
    max_restarts: int = 5
    auto_pause_failure_threshold: int = 5

    def __post_init__(self) -> None:
        if self.heartbeat_warning_s > self.heartbeat_stale_s:
            raise ValueError("heartbeat_warning_s must not exceed heartbeat_stale_s")
        if self.max_restarts < 1:
            raise ValueError("max_restarts must be >= 1")


@dataclass(frozen=True)
class Classification:
    runner_state: RunnerState
    job_state: JobState
    evolution_state: EvolutionState
    blockers: tuple[Blocker, ...]
    runner_reason: str
    job_reason: str
    evolution_reason: str
    heartbeat_age_s: float | None
    heartbeat_warning: bool = False


def _age_s(snapshot: TelemetrySnapshot, ts: datetime | None) -> float | None:
    if ts is None:
        return None
    return max(0.0, (snapshot.captured_at - ts).total_seconds())


def derive_job_state(jobs: JobsSummary) -> tuple[JobState, str]:
    if jobs.backtests_running > 0:
        return "BACKTEST_RUNNING", f"{jobs.backtests_running} backtest(s) running"
    if jobs.evolve_running > 0:
        return "EVOLVING", "Evolution job running"
    if jobs.evaluate_running > 0:
        return "EVALUATING", "Evaluation job running"
    if jobs.backtests_queued > 0:
        return "BACKTEST_QUEUED", f"{jobs.backtests_queued} backtest(s) queued"
    if jobs.total_queued > 0:
        return "QUEUED", f"{jobs.total_queued} job(s) queued"
    return "IDLE", "No active jobs"


def derive_evolution_state(
    jobs: JobsSummary, evolution_status: str | None
) -> tuple[EvolutionState, str]:
    if jobs.evolve_running > 0:
        return "EVOLVING", "Evolution job running"
    if jobs.evolve_queued > 0:
        return "MUTATION_PENDING", "Mutation queued"
    status = (evolution_status or "").upper()
    if status == "EVOLVING":
        return "TOURNAMENT_RUNNING", "Tournament in progress"
    if status == "AWAITING_BACKTEST":
        return "AWAITING_BACKTEST", "Candidate waiting for backtest"
    if status == "COOLDOWN":
        return "COOLDOWN", "Evolution cooling down"
    return "IDLE", "No evolution activity"


def _classify_runner(
    snapshot: TelemetrySnapshot, cfg: ClassifierConfig, hb_age: float | None
) -> tuple[RunnerState, str, list[Blocker], bool]:
    raw = (snapshot.runner_status_raw or "").strip().lower() or None

    if snapshot.stage == "TRIALS":
        out: list[Blocker] = []
        if raw is not None and raw != "stopped":
            out.append(bk.trials_runner_active(raw))
        return "NO_RUNNER", "TRIALS bots do not use runners", out, False

    if raw is None:
        if snapshot.jobs.runner_start_queued:
            return "STARTING", "Runner start queued", [], False
        out = []
        if snapshot.is_trading_enabled:
            out.append(bk.no_primary_runner(snapshot.stage))
        return "NO_RUNNER", "No runner instance", out, False

    if snapshot.maintenance_window:
        return "MAINTENANCE", "Maintenance window active", [], False

    if snapshot.circuit_breaker_open or snapshot.restart_count >= cfg.max_restarts:
        if not snapshot.circuit_breaker_open:
            logger.info(
                "bot %s crossed restart limit (%d >= %d); circuit break",
                snapshot.bot_id,
                snapshot.restart_count,
                cfg.max_restarts,
            )
        return (
            "CIRCUIT_BREAK",
            "Circuit breaker open",
            [
                bk.circuit_breaker_open(
                    snapshot.restart_count, cfg.max_restarts, snapshot.circuit_breaker_open
                )
            ],
            False,
        )

    if hb_age is None or hb_age > cfg.heartbeat_stale_s:
        if raw in _RUNNER_ALIVE:
            logger.debug(
                "bot %s reports %s but heartbeat is stale; classifying STALLED",
                snapshot.bot_id,
                raw,
            )
        reason = "Heartbeat stale"
        if snapshot.jobs.runner_restart_queued:
            reason = "Heartbeat stale; restart queued"
        return "STALLED", reason, [bk.runner_stalled(hb_age, cfg.heartbeat_stale_s)], False

    if raw == "paused":
        system_pause = (
            (snapshot.paused_by or "").upper() == "AUTO"
            or snapshot.consecutive_failures >= cfg.auto_pause_failure_threshold
        )
        if system_pause:
            return (
                "CIRCUIT_BREAK",
                "Runner auto-paused by the system",
                [bk.runner_auto_paused(snapshot.consecutive_failures)],
                False,
            )
        return "PAUSED", "Paused by user", [], False
    if raw == "error":
        return "ERROR", "Runner error", [bk.runner_error(snapshot.consecutive_failures)], False
    if raw == "starting":
        return "STARTING", "Runner starting", [], False
    if raw == "restarting":
        return "RESTARTING", "Runner restarting", [], False
    if raw == "stopped":
        return "STOPPED", "Runner stopped", [], False

    quote_age = _age_s(snapshot, snapshot.last_quote_at)
    if raw == "data_frozen" or (quote_age is not None and quote_age > cfg.data_frozen_s):
        return "DATA_FROZEN", "Market data frozen", [bk.data_frozen(quote_age)], False

    if raw != "running":
        logger.warning("bot %s reported unknown runner status %r", snapshot.bot_id, raw)
        return "ERROR", f"Unknown runner status: {raw}", [bk.unknown_runner_status(raw)], False

    activity = _ACTIVITY_STATES.get((snapshot.activity_state or "").upper(), "SCANNING")
    out = []
    warning = hb_age > cfg.heartbeat_warning_s
    if warning:
        out.append(bk.heartbeat_warning(hb_age, cfg.heartbeat_warning_s))
    return activity, f"Runner {activity.lower()}", out, warning


def _invariant_blockers(snapshot: TelemetrySnapshot) -> list[Blocker]:
    out: list[Blocker] = []
    if snapshot.mode is not None:
        valid = VALID_MODES_BY_STAGE[snapshot.stage]
        if snapshot.mode.upper() not in valid:
            out.append(bk.mode_stage_mismatch(snapshot.stage, snapshot.mode.upper(), valid))
    raw = (snapshot.runner_status_raw or "").lower()
    if (
        snapshot.stage != "TRIALS"
        and not snapshot.is_trading_enabled
        and raw in {"running", "starting"}
    ):
        out.append(bk.trading_disabled_runner_active(raw))
    return out


def classify(
    snapshot: TelemetrySnapshot, config: ClassifierConfig | None = None
) -> Classification:
    cfg = config or ClassifierConfig()
    hb_age = _age_s(snapshot, snapshot.last_heartbeat_at)

    runner_state, runner_reason, runner_blockers, warning = _classify_runner(
        snapshot, cfg, hb_age
    )
    job_state, job_reason = derive_job_state(snapshot.jobs)
    evolution_state, evolution_reason = derive_evolution_state(
        snapshot.jobs, snapshot.evolution_status
    )

    return Classification(
        runner_state=runner_state,
        job_state=job_state,
        evolution_state=evolution_state,
        blockers=bk.sort_blockers([*runner_blockers, *_invariant_blockers(snapshot)]),
        runner_reason=runner_reason,
        job_reason=job_reason,
        evolution_reason=evolution_reason,
        heartbeat_age_s=hb_age,
        heartbeat_warning=warning,
    )
