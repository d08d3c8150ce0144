from __future__ import annotations

from typing import Literal, cast

Stage = Literal["TRIALS", "PAPER", "SHADOW", "CANARY", "LIVE"]
RunnerState = Literal[
    "SCANNING",
    "SIGNAL",
    "TRADING",
    "STARTING",
    "STALLED",
    "ERROR",
    "DATA_FROZEN",
    "MAINTENANCE",
    "PAUSED",
    "RESTARTING",
    "CIRCUIT_BREAK",
    "STOPPED",
    "NO_RUNNER",
]
JobState = Literal[
    "IDLE", "BACKTEST_RUNNING", "BACKTEST_QUEUED", "EVOLVING", "EVALUATING", "QUEUED"
]
EvolutionState = Literal[
    "IDLE", "EVOLVING", "MUTATION_PENDING", "TOURNAMENT_RUNNING", "AWAITING_BACKTEST", "COOLDOWN"
]
Severity = Literal["INFO", "WARNING", "CRITICAL"]
HealthState = Literal["OK", "WARN", "DEGRADED", "BLOCKED"]
GateStatus = Literal["PASSED", "NEAR", "BELOW"]
Category = Literal["eligibility", "data", "risk", "performance", "capital", "runner"]

STAGE_ORDER: tuple[Stage, ...] = ("TRIALS", "PAPER", "SHADOW", "CANARY", "LIVE")
ACTIVE_RUNNER_STATES: frozenset[str] = frozenset({"SCANNING", "SIGNAL", "TRADING"})
SEVERITY_RANK: dict[str, int] = {"CRITICAL": 2, "WARNING": 1, "INFO": 0}

# Execution modes a bot may legally run in at each stage; the first entry is the fix target.
VALID_MODES_BY_STAGE: dict[Stage, tuple[str, ...]] = {
    "TRIALS": ("BACKTEST_ONLY", "SIM_LIVE"),
    "PAPER": ("SIM_LIVE",),
    "SHADOW": ("SIM_LIVE", "SHADOW"),
    "CANARY": ("LIVE",),
    "LIVE": ("LIVE",),
}


def parse_stage(raw: str) -> Stage:
    value = raw.strip().upper()
    if value not in STAGE_ORDER:
        raise ValueError(f"Unknown stage: {raw!r}")
    return cast(Stage, value)


def stage_index(stage: Stage) -> int:
    return STAGE_ORDER.index(stage)


def next_stage(stage: Stage) -> Stage | None:
    idx = stage_index(stage)
    if idx + 1 >= len(STAGE_ORDER):
        return None
    return STAGE_ORDER[idx + 1]


def previous_stage(stage: Stage) -> Stage | None:
    idx = stage_index(stage)
    if idx == 0:
        return None
    return STAGE_ORDER[idx - 1]
