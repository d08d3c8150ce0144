from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from lifecycle_engine.core.blockers import Blocker
from lifecycle_engine.core.health_scorer import HealthConfig, display_health_state, score
from lifecycle_engine.core.state_classifier import ClassifierConfig, classify
from lifecycle_engine.core.types import (
    ACTIVE_RUNNER_STATES,
    EvolutionState,
    HealthState,
    JobState,
    RunnerState,
    Stage,
)
from lifecycle_engine.telemetry.schemas import TelemetrySnapshot


@dataclass(frozen=True)
class CanonicalBotState:
    bot_id: str
    stage: Stage
    runner_state: RunnerState
    job_state: JobState
    evolution_state: EvolutionState
    health_score: float
    health_state: HealthState
    health_reason: str
    health_reason_code: str
    blockers: tuple[Blocker, ...]
    last_heartbeat_at: datetime | None
    evaluated_at: datetime
    why_not_trading: tuple[str, ...] = ()
    why_not_promoted: tuple[str, ...] = ()
    is_auto_healable: bool = False
    suggested_actions: tuple[str, ...] = ()
    health_components: dict[str, float] = field(default_factory=dict)

    @property
    def critical_blockers(self) -> tuple[Blocker, ...]:
        return tuple(b for b in self.blockers if b.is_critical)


def evaluate_bot_state(
    snapshot: TelemetrySnapshot,
    classifier_config: ClassifierConfig | None = None,
    health_config: HealthConfig | None = None,
) -> CanonicalBotState:
    health_cfg = health_config or HealthConfig()
    classified = classify(snapshot, classifier_config)
    health = score(snapshot, classified, health_cfg)
    health_state = display_health_state(
        health.score, classified.blockers, health_cfg.thresholds
    )
    critical = [b for b in classified.blockers if b.is_critical]

    why_not_trading: list[str] = []
    if not snapshot.is_trading_enabled:
        why_not_trading.append("Trading disabled")
    if classified.runner_state not in ACTIVE_RUNNER_STATES:
        why_not_trading.append(classified.runner_reason)
    why_not_trading.extend(b.message for b in critical)

    why_not_promoted: list[str] = []
    if snapshot.stage == "LIVE":
        why_not_promoted.append("Already at final stage")
    if health.score < health_cfg.thresholds.warn:
        why_not_promoted.append(f"Health score too low ({health.score:.1f})")
    if critical:
        why_not_promoted.append(f"Critical blockers present ({len(critical)})")

    actions: list[str] = []
    for blocker in classified.blockers:
        if blocker.suggested_action and blocker.suggested_action not in actions:
            actions.append(blocker.suggested_action)

    return CanonicalBotState(
        bot_id=snapshot.bot_id,
        stage=snapshot.stage,
        runner_state=classified.runner_state,
        job_state=classified.job_state,
        evolution_state=classified.evolution_state,
        health_score=health.score,
        health_state=health_state,
        health_reason=health.reason,
        health_reason_code=health.reason_code,
        blockers=classified.blockers,
        last_heartbeat_at=snapshot.last_heartbeat_at,
        evaluated_at=snapshot.captured_at,
        why_not_trading=tuple(dict.fromkeys(why_not_trading)),
        why_not_promoted=tuple(why_not_promoted),
        is_auto_healable=any(b.auto_healable for b in classified.blockers),
        suggested_actions=tuple(actions),
        health_components=health.components,
    )
