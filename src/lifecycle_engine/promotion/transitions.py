from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from lifecycle_engine.core.types import Stage, stage_index

TransitionKind = Literal["promotion", "demotion", "emergency", "none"]


@dataclass(frozen=True)
class TransitionCheck:
    from_stage: Stage
    to_stage: Stage
    kind: TransitionKind
    allowed: bool
    reason: str


def validate_transition(
    from_stage: Stage,
    to_stage: Stage,
    *,
    emergency: bool = False,
    governance_approved: bool = False,
) -> TransitionCheck:
    src = stage_index(from_stage)
    dst = stage_index(to_stage)

    if src == dst:
        return TransitionCheck(from_stage, to_stage, "none", False, "Already in stage")

    if dst < src:
        if emergency:
            if to_stage != "TRIALS":
                return TransitionCheck(
                    from_stage, to_stage, "emergency", False, "Emergency demotion must go to TRIALS"
                )
            return TransitionCheck(from_stage, to_stage, "emergency", True, "Emergency demotion")
        if src - dst > 1:
            return TransitionCheck(
                from_stage,
                to_stage,
                "demotion",
                False,
                f"Cannot skip stages: {from_stage} -> {to_stage} without an emergency",
            )
        return TransitionCheck(from_stage, to_stage, "demotion", True, "Demotion")

    if dst - src > 1:
        return TransitionCheck(
            from_stage,
            to_stage,
            "promotion",
            False,
            f"Cannot skip stages: {from_stage} -> {to_stage}",
        )
    if to_stage == "LIVE" and not governance_approved:
        return TransitionCheck(
            from_stage, to_stage, "promotion", False, "LIVE requires governance approval"
        )
    return TransitionCheck(from_stage, to_stage, "promotion", True, "Promotion")
