"""TOML configuration for the engine.

Every section is optional; missing keys keep the built-in defaults. Unknown
keys are rejected so a typo never silently reverts a threshold to its default.
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, TypeVar, cast

from lifecycle_engine.core.auto_heal import BackoffConfig
from lifecycle_engine.core.health_scorer import HealthConfig, HealthThresholds, HealthWeights
from lifecycle_engine.core.state_classifier import ClassifierConfig
from lifecycle_engine.core.types import Stage, parse_stage
from lifecycle_engine.promotion.demotion import DEFAULT_HOLDING_GATES, DemotionConfig
from lifecycle_engine.promotion.engine import DEFAULT_STAGE_GATES, PromotionConfig
from lifecycle_engine.promotion.gates import MIN_TRADES_BY_STAGE, StageGateConfig
from lifecycle_engine.risk.tiers import RISK_TIERS, RiskTierConfig

T = TypeVar("T")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class EngineConfig:
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    promotion: PromotionConfig = field(default_factory=PromotionConfig)
    demotion: DemotionConfig = field(default_factory=DemotionConfig)
    risk_tiers: dict[str, RiskTierConfig] = field(default_factory=lambda: dict(RISK_TIERS))
    backoff: BackoffConfig = field(default_factory=BackoffConfig)


def load_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def _section(raw: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{key}] must be a table")
    return dict(value)


def _build(cls: type[T], raw: Mapping[str, Any], where: str, base: T | None = None) -> T:
    names = {f.name for f in fields(cast(Any, cls))}
    unknown = set(raw) - names
    if unknown:
        raise ConfigError(f"Unknown keys in [{where}]: {', '.join(sorted(unknown))}")
    values: dict[str, Any] = {}
    if base is not None:
        values = {name: getattr(base, name) for name in names}
    values.update(raw)
    try:
        return cls(**values)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid [{where}]: {exc}") from exc


def _stage_table(
    raw: Mapping[str, Any], where: str, defaults: Mapping[Stage, StageGateConfig]
) -> dict[Stage, StageGateConfig]:
    out = dict(defaults)
    for stage_name, section in raw.items():
        try:
            stage = parse_stage(stage_name)
        except ValueError as exc:
            raise ConfigError(f"[{where}]: {exc}") from exc
        out[stage] = _build(StageGateConfig, section, f"{where}.{stage}", defaults.get(stage))
    return out


def parse_engine_config(raw: Mapping[str, Any]) -> EngineConfig:
    known = {"classifier", "health", "promotion", "demotion", "risk", "auto_heal"}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")

    classifier = _build(ClassifierConfig, _section(raw, "classifier"), "classifier")

    promo_raw = _section(raw, "promotion")
    stage_gates = _stage_table(
        promo_raw.pop("stages", {}), "promotion.stages", DEFAULT_STAGE_GATES
    )
    min_trades: dict[Stage, int | None] = dict(MIN_TRADES_BY_STAGE)
    for stage_name, count in promo_raw.pop("min_trades", {}).items():
        try:
            stage = parse_stage(stage_name)
        except ValueError as exc:
            raise ConfigError(f"[promotion.min_trades]: {exc}") from exc
        min_trades[stage] = int(count) if count else None
    promotion = _build(
        PromotionConfig,
        {**promo_raw, "stage_gates": stage_gates, "min_trades": min_trades},
        "promotion",
    )

    health_raw = _section(raw, "health")
    if "min_trades" in health_raw:
        raise ConfigError("[health]: trade targets are set under [promotion.min_trades]")
    weights = _build(HealthWeights, health_raw.pop("weights", {}), "health.weights")
    thresholds = _build(HealthThresholds, health_raw.pop("thresholds", {}), "health.thresholds")
    health_raw.update(weights=weights, thresholds=thresholds, min_trades=dict(min_trades))
    health = _build(HealthConfig, health_raw, "health")

    demo_raw = _section(raw, "demotion")
    holding = _stage_table(demo_raw.pop("stages", {}), "demotion.stages", DEFAULT_HOLDING_GATES)
    if "safety_codes" in demo_raw:
        demo_raw["safety_codes"] = frozenset(demo_raw["safety_codes"])
    demotion = _build(DemotionConfig, {**demo_raw, "holding_gates": holding}, "demotion")

    tiers = dict(RISK_TIERS)
    for name, section in _section(raw, "risk").get("tiers", {}).items():
        base = tiers.get(name)
        where = f"risk.tiers.{name}"
        tiers[name] = _build(RiskTierConfig, {**section, "name": name}, where, base)

    backoff = _build(BackoffConfig, _section(raw, "auto_heal"), "auto_heal")

    return EngineConfig(
        classifier=classifier,
        health=health,
        promotion=promotion,
        demotion=demotion,
        risk_tiers=tiers,
        backoff=backoff,
    )


def load_engine_config(path: Path | None) -> EngineConfig:
    if path is None:
        return EngineConfig()
    if not path.exists():
        raise FileNotFoundError(path)
    return parse_engine_config(load_toml(path))
