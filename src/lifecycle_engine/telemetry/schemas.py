from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from lifecycle_engine.core.types import Stage


@dataclass(frozen=True)
class RollupMetrics:
    """Trade/performance rollup for the bot's current stage. win_rate is a percentage."""

    trades: int
    win_rate: float | None = None
    profit_factor: float | None = None
    sharpe: float | None = None
    max_drawdown_pct: float | None = None
    expectancy: float | None = None
    last_trade_at: datetime | None = None
    active_days: int = 0
    consecutive_losing_days: int = 0


@dataclass(frozen=True)
class JobsSummary:
    backtests_running: int = 0
    backtests_queued: int = 0
    evolve_running: int = 0
    evolve_queued: int = 0
    evaluate_running: int = 0
    runner_start_queued: bool = False
    runner_restart_queued: bool = False

    @property
    def total_queued(self) -> int:
        return self.backtests_queued + self.evolve_queued


@dataclass(frozen=True)
class BacktestRollup:
    completed: int = 0
    failed: int = 0
    last_completed_at: datetime | None = None
    last_status: str | None = None


@dataclass(frozen=True)
class BrokerConnection:
    """Broker link as reported by two generations of connection status.

    ``status`` is the legacy field where ``CONNECTED`` only means proven once a
    successful call has been recorded; ``verification`` is the newer
    ``VERIFIED``/``UNVERIFIED`` flag. Both are kept and reported side by side.
    """

    status: str | None = None
    last_success_at: datetime | None = None
    verification: str | None = None
    last_verified_at: datetime | None = None

    @property
    def legacy_verified(self) -> bool:
        return (self.status or "").upper() == "CONNECTED" and self.last_success_at is not None

    @property
    def canonical_verified(self) -> bool:
        return (self.verification or "").upper() == "VERIFIED"

    @property
    def sources_agree(self) -> bool:
        return self.legacy_verified == self.canonical_verified


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Last-known telemetry for one bot, captured at ``captured_at`` (UTC)."""

    bot_id: str
    stage: Stage
    captured_at: datetime
    last_heartbeat_at: datetime | None = None
    runner_status_raw: str | None = None
    activity_state: str | None = None
    jobs: JobsSummary = field(default_factory=JobsSummary)
    evolution_status: str | None = None
    rollup_metrics: RollupMetrics | None = None
    consecutive_failures: int = 0
    restart_count: int = 0
    circuit_breaker_open: bool = False
    maintenance_window: bool = False
    paused_by: str | None = None
    mode: str | None = None
    is_trading_enabled: bool = True
    last_quote_at: datetime | None = None
    backtests: BacktestRollup = field(default_factory=BacktestRollup)
    evolution_rollbacks: int = 0
    broker: BrokerConnection | None = None
