"""Per-trade contract sizing.

``size`` distinguishes two failure kinds. Inputs that make the calculation
meaningless raise ``SizingInputError``. Valid inputs that a risk rule refuses
come back as a normal ``SizingResult`` with ``contracts == 0`` and
``reason_if_blocked`` set.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field

from lifecycle_engine.core.blockers import Blocker
from lifecycle_engine.risk.limits import check_daily_loss, is_blown
from lifecycle_engine.risk.tiers import BotRiskConfig, RiskTierConfig

logger = logging.getLogger(__name__)

CAP_ORDER = ("max_contracts_per_trade", "max_contracts_per_symbol", "max_total_exposure_contracts")


class SizingInputError(ValueError):
    """Raised when sizing cannot be computed from the given inputs."""


@dataclass(frozen=True)
class AccountState:
    daily_pnl: float = 0.0
    existing_position_contracts: int = 0
    total_open_contracts: int = 0


@dataclass(frozen=True)
class CalculationDetails:
    risk_percent_used: float
    risk_percent_source: str
    max_risk_dollars_per_trade: float
    caps: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SizingResult:
    contracts: int
    risk_dollars: float
    dollars_per_contract_at_stop: float
    raw_contracts: int | None
    capped_by: str | None
    reason_if_blocked: str | None
    calculation_details: CalculationDetails

    def __post_init__(self) -> None:
        if self.contracts < 0:
            raise ValueError("contracts must be >= 0")
        if (self.contracts == 0) != (self.reason_if_blocked is not None):
            raise ValueError("contracts == 0 must coincide with a reason_if_blocked")

    @property
    def blocked(self) -> bool:
        return self.contracts == 0


def _validate(
    account_equity: float,
    stop_distance_ticks: float | None,
    instrument_tick_value: float,
    risk_percent: float,
) -> float:
    if stop_distance_ticks is None:
        raise SizingInputError("stop_distance_ticks is required")
    if not math.isfinite(stop_distance_ticks) or stop_distance_ticks <= 0:
        raise SizingInputError(f"stop_distance_ticks must be > 0, got {stop_distance_ticks}")
    if not math.isfinite(account_equity):
        raise SizingInputError(f"account_equity must be finite, got {account_equity}")
    if not math.isfinite(instrument_tick_value) or instrument_tick_value < 0:
        raise SizingInputError(f"instrument_tick_value must be >= 0, got {instrument_tick_value}")
    if not math.isfinite(risk_percent) or risk_percent < 0:
        raise SizingInputError(f"risk percent must be >= 0, got {risk_percent}")
    return float(stop_distance_ticks)


def size(
    account_equity: float,
    risk_tier_config: RiskTierConfig,
    bot_risk_config: BotRiskConfig | None,
    stop_distance_ticks: float | None,
    instrument_tick_value: float,
    *,
    account_state: AccountState | None = None,
    blockers: Iterable[Blocker] = (),
) -> SizingResult:
    bot = bot_risk_config or BotRiskConfig()
    state = account_state or AccountState()
    tier = risk_tier_config

    if bot.risk_per_trade is not None:
        risk_percent, source = bot.risk_per_trade, "bot"
    else:
        risk_percent, source = tier.risk_percent_per_trade, "tier"
    stop_ticks = _validate(account_equity, stop_distance_ticks, instrument_tick_value, risk_percent)

    risk_dollars = max(0.0, min(account_equity * risk_percent, tier.max_risk_dollars_per_trade))
    per_contract = stop_ticks * instrument_tick_value

    per_trade_cap = tier.max_contracts_per_trade
    if bot.max_contracts_per_trade is not None:
        per_trade_cap = min(per_trade_cap, bot.max_contracts_per_trade)
    caps = {
        "max_contracts_per_trade": per_trade_cap,
        "max_contracts_per_symbol": max(
            0, tier.max_contracts_per_symbol - abs(state.existing_position_contracts)
        ),
        "max_total_exposure_contracts": max(
            0, tier.max_total_exposure_contracts - state.total_open_contracts
        ),
    }
    details = CalculationDetails(
        risk_percent_used=risk_percent,
        risk_percent_source=source,
        max_risk_dollars_per_trade=tier.max_risk_dollars_per_trade,
        caps=caps,
    )

    def _blocked(reason: str) -> SizingResult:
        logger.info("sizing blocked: %s", reason)
        return SizingResult(
            contracts=0,
            risk_dollars=risk_dollars,
            dollars_per_contract_at_stop=per_contract,
            raw_contracts=None,
            capped_by=None,
            reason_if_blocked=reason,
            calculation_details=details,
        )

    if is_blown(account_equity):
        return _blocked(f"Account blown: balance ${account_equity:,.2f} is at or below zero")
    critical = [b.code for b in blockers if b.is_critical]
    if critical:
        return _blocked(f"Not eligible to trade: {', '.join(critical)}")
    loss = check_daily_loss(account_equity, state.daily_pnl, tier)
    if loss.breached:
        return _blocked(
            f"Daily loss limit breached: ${-state.daily_pnl:,.2f} lost "
            f"(limit ${loss.limit_dollars:,.2f})"
        )
    if per_contract == 0:
        return _blocked("Dollars per contract at stop is zero")

    raw_contracts = math.floor(risk_dollars / per_contract)
    contracts = raw_contracts
    capped_by: str | None = None
    for name in CAP_ORDER:
        if contracts > caps[name]:
            contracts = caps[name]
            if capped_by is None:
                capped_by = name

    reason: str | None = None
    if contracts == 0:
        if raw_contracts == 0:
            reason = (
                f"Risk too small for stop distance. Risk ${risk_dollars:,.2f} vs "
                f"${per_contract:,.2f} per contract at stop."
            )
        else:
            reason = f"Order blocked by {capped_by} limit"

    return SizingResult(
        contracts=contracts,
        risk_dollars=risk_dollars,
        dollars_per_contract_at_stop=per_contract,
        raw_contracts=raw_contracts,
        capped_by=capped_by,
        reason_if_blocked=reason,
        calculation_details=details,
    )
