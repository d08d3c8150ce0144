from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TIER = "moderate"


@dataclass(frozen=True)
class RiskTierConfig:
    name: str
    risk_percent_per_trade: float
    max_risk_dollars_per_trade: float
    max_contracts_per_trade: int
    max_contracts_per_symbol: int
    max_daily_loss_percent: float
    max_daily_loss_dollars: float
    max_total_exposure_contracts: int

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name != "name" and value < 0:
                raise ValueError(f"Risk tier {self.name}: {f.name} must be >= 0, got {value}")
        if self.risk_percent_per_trade > 1.0 or self.max_daily_loss_percent > 1.0:
            raise ValueError(f"Risk tier {self.name}: percentages are fractions in [0, 1]")


@dataclass(frozen=True)
class BotRiskConfig:
    """Per-bot overrides. ``None`` defers to the account's risk tier."""

    risk_per_trade: float | None = None
    max_contracts_per_trade: int | None = None

    def __post_init__(self) -> None:
        if self.risk_per_trade is not None and not 0.0 <= self.risk_per_trade <= 1.0:
            raise ValueError(
                f"risk_per_trade must be a fraction in [0, 1], got {self.risk_per_trade}"
            )
        if self.max_contracts_per_trade is not None and self.max_contracts_per_trade < 0:
            raise ValueError("max_contracts_per_trade must be >= 0")


RISK_TIERS: dict[str, RiskTierConfig] = {
    "conservative": RiskTierConfig(
        name="conservative",
        risk_percent_per_trade=0.0025,
        max_risk_dollars_per_trade=150.0,
        max_contracts_per_trade=1,
        max_contracts_per_symbol=2,
        max_daily_loss_percent=0.015,
        max_daily_loss_dollars=500.0,
        max_total_exposure_contracts=3,
    ),
    "moderate": RiskTierConfig(
        name="moderate",
        risk_percent_per_trade=0.005,
        max_risk_dollars_per_trade=300.0,
        max_contracts_per_trade=3,
        max_contracts_per_symbol=5,
        max_daily_loss_percent=0.02,
        max_daily_loss_dollars=1000.0,
        max_total_exposure_contracts=8,
    ),
    "aggressive": RiskTierConfig(
        name="aggressive",
        risk_percent_per_trade=0.01,
        max_risk_dollars_per_trade=500.0,
        max_contracts_per_trade=5,
        max_contracts_per_symbol=10,
        max_daily_loss_percent=0.03,
        max_daily_loss_dollars=2000.0,
        max_total_exposure_contracts=15,
    ),
}


def get_risk_tier(
    name: str | None, tiers: Mapping[str, RiskTierConfig] | None = None
) -> RiskTierConfig:
    table = tiers or RISK_TIERS
    key = (name or DEFAULT_TIER).strip().lower()
    tier = table.get(key)
    if tier is None:
        logger.warning("unknown risk tier %r; falling back to %s", name, DEFAULT_TIER)
        tier = table.get(DEFAULT_TIER, RISK_TIERS[DEFAULT_TIER])
    return tier


def build_risk_tier(
    raw: Mapping[str, Any], tiers: Mapping[str, RiskTierConfig] | None = None
) -> RiskTierConfig:
    """Account risk profile: a named preset with any explicitly set fields overriding it."""
    base = get_risk_tier(raw.get("tier") or raw.get("name"), tiers)
    allowed = {f.name: f for f in fields(RiskTierConfig) if f.name != "name"}
    overrides: dict[str, Any] = {}
    for key, value in raw.items():
        if key in {"tier", "name"} or value is None:
            continue
        if key not in allowed:
            raise ValueError(f"Unknown risk tier field: {key}")
        caster = int if allowed[key].type in ("int", int) else float
        overrides[key] = caster(value)
    if not overrides:
        return base
    return replace(base, name=f"{base.name}+custom", **overrides)


@dataclass(frozen=True)
class InstrumentSpec:
    symbol: str
    tick_size: float
    tick_value: float

    def ticks_for_price_distance(self, distance: float) -> float:
        return abs(distance) / self.tick_size

    def price_for_ticks(self, ticks: float) -> float:
        return ticks * self.tick_size


INSTRUMENTS: dict[str, InstrumentSpec] = {
    spec.symbol: spec
    for spec in (
        InstrumentSpec("ES", 0.25, 12.50),
        InstrumentSpec("NQ", 0.25, 5.00),
        InstrumentSpec("RTY", 0.10, 5.00),
        InstrumentSpec("YM", 1.00, 5.00),
        InstrumentSpec("MES", 0.25, 1.25),
        InstrumentSpec("MNQ", 0.25, 0.50),
        InstrumentSpec("M2K", 0.10, 0.50),
        InstrumentSpec("MYM", 1.00, 0.50),
        InstrumentSpec("CL", 0.01, 10.00),
        InstrumentSpec("MCL", 0.01, 1.00),
        InstrumentSpec("NG", 0.001, 10.00),
        InstrumentSpec("GC", 0.10, 10.00),
        InstrumentSpec("MGC", 0.10, 1.00),
        InstrumentSpec("SI", 0.005, 25.00),
        InstrumentSpec("SIL", 0.005, 5.00),
        InstrumentSpec("HG", 0.0005, 12.50),
        InstrumentSpec("6E", 0.00005, 6.25),
        InstrumentSpec("ZN", 0.015625, 15.625),
        InstrumentSpec("ZB", 0.03125, 31.25),
        InstrumentSpec("ZF", 0.0078125, 7.8125),
    )
}


def get_instrument(symbol: str) -> InstrumentSpec:
    spec = INSTRUMENTS.get(symbol.strip().upper())
    if spec is None:
        raise ValueError(f"Unknown instrument: {symbol}")
    return spec
