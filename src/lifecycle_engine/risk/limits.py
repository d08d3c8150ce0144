from __future__ import annotations

from dataclasses import dataclass

from lifecycle_engine.core import blockers as bk
from lifecycle_engine.core.blockers import Blocker
from lifecycle_engine.risk.tiers import RiskTierConfig


@dataclass(frozen=True)
class DailyLossCheck:
    daily_pnl: float
    limit_dollars: float
    breached: bool


def daily_loss_limit(equity: float, tier: RiskTierConfig) -> float:
    by_percent = max(0.0, equity) * tier.max_daily_loss_percent
    return min(by_percent, tier.max_daily_loss_dollars)


def check_daily_loss(equity: float, daily_pnl: float, tier: RiskTierConfig) -> DailyLossCheck:
    limit = daily_loss_limit(equity, tier)
    # A zero limit halts on any loss; a flat day is never a breach.
    breached = daily_pnl < 0.0 and daily_pnl <= -limit
    return DailyLossCheck(daily_pnl=daily_pnl, limit_dollars=limit, breached=breached)


def is_blown(equity: float) -> bool:
    return equity <= 0.0


def account_blockers(equity: float, daily_pnl: float, tier: RiskTierConfig) -> list[Blocker]:
    if is_blown(equity):
        return [bk.account_blown(equity)]
    check = check_daily_loss(equity, daily_pnl, tier)
    if check.breached:
        return [bk.kill_switch_engaged(daily_pnl, check.limit_dollars)]
    return []
