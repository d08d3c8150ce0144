"""Advisory recovery plan for auto-healable blockers.

Nothing here performs an action: the functions only say which recovery step an
external loop could take and when a restart would be allowed again.
"""

from __future__ import annotations

import random
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from lifecycle_engine.core.blockers import Blocker
from lifecycle_engine.core.types import VALID_MODES_BY_STAGE, Stage

HealActionKind = Literal["QUEUE_RUNNER_RESTART", "QUEUE_RUNNER_START", "FIX_MODE", "STOP_RUNNER"]

_ACTIONS_BY_CODE: dict[str, HealActionKind] = {
    "RUNNER_STALLED": "QUEUE_RUNNER_RESTART",
    "RUNNER_ERROR": "QUEUE_RUNNER_RESTART",
    "NO_PRIMARY_RUNNER": "QUEUE_RUNNER_START",
    "MODE_STAGE_MISMATCH": "FIX_MODE",
    "TRIALS_RUNNER_ACTIVE": "STOP_RUNNER",
}


@dataclass(frozen=True)
class BackoffConfig:
    base_s: float = 30.0
    max_s: float = 900.0
    strategy: Literal["exponential", "linear"] = "exponential"
    jitter_min: float = 0.8
    jitter_max: float = 1.2

    def __post_init__(self) -> None:
        if self.base_s <= 0 or self.max_s < self.base_s:
            raise ValueError("Backoff requires 0 < base_s <= max_s")
        if self.strategy not in ("exponential", "linear"):
            raise ValueError(f"Unsupported backoff strategy: {self.strategy}")
        if not 0 < self.jitter_min <= self.jitter_max:
            raise ValueError("Backoff jitter requires 0 < jitter_min <= jitter_max")


@dataclass(frozen=True)
class HealAction:
    action: HealActionKind
    blocker_code: str
    reason: str
    target_mode: str | None = None


def restart_backoff_s(
    attempt: int, config: BackoffConfig | None = None, rng: random.Random | None = None
) -> float:
    """Delay before restart number ``attempt`` (0-based). Jitter applies only with an rng."""
    cfg = config or BackoffConfig()
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    if cfg.strategy == "exponential":
        delay = cfg.base_s * (2.0 ** min(attempt, 32))
    else:
        delay = cfg.base_s * (attempt + 1)
    delay = min(delay, cfg.max_s)
    if rng is not None:
        delay *= rng.uniform(cfg.jitter_min, cfg.jitter_max)
    return delay


def in_backoff(
    restart_attempts: int,
    last_restart_at: datetime | None,
    as_of: datetime,
    config: BackoffConfig | None = None,
) -> bool:
    if last_restart_at is None or restart_attempts <= 0:
        return False
    wait = timedelta(seconds=restart_backoff_s(restart_attempts - 1, config))
    return as_of - last_restart_at < wait


def suggest_heal_actions(
    stage: Stage,
    blockers: Iterable[Blocker],
    *,
    as_of: datetime,
    restart_attempts: int = 0,
    last_restart_at: datetime | None = None,
    config: BackoffConfig | None = None,
) -> list[HealAction]:
    waiting = in_backoff(restart_attempts, last_restart_at, as_of, config)
    actions: list[HealAction] = []
    seen: set[HealActionKind] = set()
    for blocker in blockers:
        if not blocker.auto_healable:
            continue
        kind = _ACTIONS_BY_CODE.get(blocker.code)
        if kind is None or kind in seen:
            continue
        if kind == "QUEUE_RUNNER_RESTART" and waiting:
            continue
        target_mode = VALID_MODES_BY_STAGE[stage][0] if kind == "FIX_MODE" else None
        actions.append(HealAction(kind, blocker.code, blocker.message, target_mode))
        seen.add(kind)
    return actions
