from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

from lifecycle_engine.core.canonical_state import CanonicalBotState


@dataclass(frozen=True)
class FleetSummary:
    bot_count: int
    by_runner_state: dict[str, int]
    by_health_state: dict[str, int]
    by_stage: dict[str, int]
    mean_health_score: float
    critical_bot_count: int
    auto_healable_count: int
    top_blockers: list[tuple[str, int]]
    lowest_health: list[tuple[str, float]]


def summarize_fleet(states: Sequence[CanonicalBotState], worst_n: int = 5) -> FleetSummary:
    blocker_counts: Counter[str] = Counter()
    for state in states:
        blocker_counts.update({b.code for b in state.blockers})

    mean = sum(s.health_score for s in states) / len(states) if states else 0.0
    ranked = sorted(states, key=lambda s: (s.health_score, s.bot_id))
    return FleetSummary(
        bot_count=len(states),
        by_runner_state=dict(Counter(s.runner_state for s in states)),
        by_health_state=dict(Counter(s.health_state for s in states)),
        by_stage=dict(Counter(s.stage for s in states)),
        mean_health_score=round(mean, 1),
        critical_bot_count=sum(1 for s in states if s.critical_blockers),
        auto_healable_count=sum(1 for s in states if s.is_auto_healable),
        top_blockers=blocker_counts.most_common(worst_n),
        lowest_health=[(s.bot_id, s.health_score) for s in ranked[:worst_n]],
    )
