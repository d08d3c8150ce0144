from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from lifecycle_engine.core.blockers import Blocker
from lifecycle_engine.core.types import STAGE_ORDER, Stage, previous_stage, stage_index
from lifecycle_engine.promotion.gates import GateResult, StageGateConfig, metric_gates
from lifecycle_engine.telemetry.schemas import RollupMetrics

logger = logging.getLogger(__name__)

# Minimum performance a bot must keep to stay in a stage.
DEFAULT_HOLDING_GATES: dict[Stage, StageGateConfig] = {
    "TRIALS": StageGateConfig(),
    "PAPER": StageGateConfig(max_drawdown_pct=25.0),
    "SHADOW": StageGateConfig(min_win_rate=35.0),
    "CANARY": StageGateConfig(min_sharpe=0.5, max_consecutive_losing_days=2),
    "LIVE": StageGateConfig(max_drawdown_pct=20.0, min_profit_factor=1.0),
}

SAFETY_BLOCKER_CODES: frozenset[str] = frozenset({"ACCOUNT_BLOWN", "KILL_SWITCH_ENGAGED"})


@dataclass(frozen=True)
class DemotionConfig:
    holding_gates: dict[Stage, StageGateConfig] = field(
        default_factory=lambda: dict(DEFAULT_HOLDING_GATES)
    )
    safety_codes: frozenset[str] = SAFETY_BLOCKER_CODES


@dataclass(frozen=True)
class DemotionDecision:
    current_stage: Stage
    should_demote: bool
    target_stage: Stage | None
    highest_satisfied_stage: Stage
    reasons: tuple[str, ...]
    emergency: bool = False
    gates: dict[str, GateResult] = field(default_factory=dict)


def holding_gates(
    stage: Stage, metrics: RollupMetrics, config: DemotionConfig | None = None
) -> dict[str, GateResult]:
    cfg = config or DemotionConfig()
    stage_cfg = cfg.holding_gates.get(stage, StageGateConfig())
    # Holding checks are strict: the near band is disabled so only PASSED keeps the stage.
    return {g.code: g for g in metric_gates(metrics, stage_cfg, near_band=1.0)}


def _satisfies(stage: Stage, metrics: RollupMetrics, cfg: DemotionConfig) -> bool:
    return all(g.passed for g in holding_gates(stage, metrics, cfg).values())


def evaluate_demotion(
    stage: Stage,
    rollup_metrics: RollupMetrics | None,
    *,
    blockers: Iterable[Blocker] = (),
    config: DemotionConfig | None = None,
) -> DemotionDecision:
    cfg = config or DemotionConfig()

    safety = [b for b in blockers if b.code in cfg.safety_codes]
    if safety and stage != "TRIALS":
        logger.warning(
            "emergency demotion %s -> TRIALS: %s", stage, ", ".join(b.code for b in safety)
        )
        return DemotionDecision(
            current_stage=stage,
            should_demote=True,
            target_stage="TRIALS",
            highest_satisfied_stage="TRIALS",
            reasons=tuple(b.message for b in safety),
            emergency=True,
        )

    if rollup_metrics is None:
        return DemotionDecision(
            current_stage=stage,
            should_demote=False,
            target_stage=None,
            highest_satisfied_stage=stage,
            reasons=("No metrics to evaluate",),
        )

    gates = holding_gates(stage, rollup_metrics, cfg)
    failing = [g for g in gates.values() if not g.passed]
    if not failing:
        return DemotionDecision(
            current_stage=stage,
            should_demote=False,
            target_stage=None,
            highest_satisfied_stage=stage,
            reasons=(),
            gates=gates,
        )

    highest: Stage = "TRIALS"
    for candidate in reversed(STAGE_ORDER[: stage_index(stage)]):
        if _satisfies(candidate, rollup_metrics, cfg):
            highest = candidate
            break

    # One stage per evaluation cycle, even when lower stages are also unsatisfied.
    target = previous_stage(stage)
    logger.info("demotion %s -> %s (highest satisfied %s)", stage, target, highest)
    return DemotionDecision(
        current_stage=stage,
        should_demote=True,
        target_stage=target,
        highest_satisfied_stage=highest,
        reasons=tuple(g.message for g in failing),
        gates=gates,
    )
