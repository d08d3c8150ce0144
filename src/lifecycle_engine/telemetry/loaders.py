from __future__ import annotations

import csv
import json
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pyarrow.parquet as pq  # type: ignore[import-untyped]

from lifecycle_engine.core.types import parse_stage
from lifecycle_engine.telemetry.schemas import (
    BacktestRollup,
    BrokerConnection,
    JobsSummary,
    RollupMetrics,
    TelemetrySnapshot,
)

_NESTED = ("jobs", "rollup_metrics", "backtests", "broker")
_TRUE = {"1", "true", "yes", "y", "t"}


def _coerce_ts(raw: object) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        ts = raw
    else:
        ts = datetime.fromisoformat(str(raw))
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def _opt_float(raw: object) -> float | None:
    if raw is None or raw == "":
        return None
    return float(raw)  # type: ignore[arg-type]


def _int(raw: object, default: int = 0) -> int:
    if raw is None or raw == "":
        return default
    return int(float(raw))  # type: ignore[arg-type]


def _bool(raw: object, default: bool = False) -> bool:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in _TRUE


def _opt_str(raw: object) -> str | None:
    if raw is None or raw == "":
        return None
    return str(raw)


def _unflatten(row: Mapping[str, Any]) -> dict[str, Any]:
    """Fold flat ``section.field`` columns (CSV/Parquet) into nested sections."""
    out: dict[str, Any] = {}
    for key, value in row.items():
        if "." in key:
            section, name = key.split(".", 1)
            if section not in _NESTED:
                raise ValueError(f"Unknown snapshot column: {key}")
            if value is None or value == "":
                continue
            out.setdefault(section, {})[name] = value
        else:
            out[key] = value
    return out


def snapshot_from_record(raw: Mapping[str, Any]) -> TelemetrySnapshot:
    if "bot_id" not in raw or "stage" not in raw or "captured_at" not in raw:
        raise ValueError("Snapshot record requires bot_id, stage and captured_at")
    captured_at = _coerce_ts(raw["captured_at"])
    if captured_at is None:
        raise ValueError(f"Snapshot for {raw['bot_id']} has empty captured_at")

    jobs_raw = raw.get("jobs") or {}
    jobs = JobsSummary(
        backtests_running=_int(jobs_raw.get("backtests_running")),
        backtests_queued=_int(jobs_raw.get("backtests_queued")),
        evolve_running=_int(jobs_raw.get("evolve_running")),
        evolve_queued=_int(jobs_raw.get("evolve_queued")),
        evaluate_running=_int(jobs_raw.get("evaluate_running")),
        runner_start_queued=_bool(jobs_raw.get("runner_start_queued")),
        runner_restart_queued=_bool(jobs_raw.get("runner_restart_queued")),
    )

    metrics: RollupMetrics | None = None
    metrics_raw = raw.get("rollup_metrics")
    if metrics_raw:
        metrics = RollupMetrics(
            trades=_int(metrics_raw.get("trades")),
            win_rate=_opt_float(metrics_raw.get("win_rate")),
            profit_factor=_opt_float(metrics_raw.get("profit_factor")),
            sharpe=_opt_float(metrics_raw.get("sharpe")),
            max_drawdown_pct=_opt_float(metrics_raw.get("max_drawdown_pct")),
            expectancy=_opt_float(metrics_raw.get("expectancy")),
            last_trade_at=_coerce_ts(metrics_raw.get("last_trade_at")),
            active_days=_int(metrics_raw.get("active_days")),
            consecutive_losing_days=_int(metrics_raw.get("consecutive_losing_days")),
        )

    bt_raw = raw.get("backtests") or {}
    backtests = BacktestRollup(
        completed=_int(bt_raw.get("completed")),
        failed=_int(bt_raw.get("failed")),
        last_completed_at=_coerce_ts(bt_raw.get("last_completed_at")),
        last_status=_opt_str(bt_raw.get("last_status")),
    )

    broker: BrokerConnection | None = None
    broker_raw = raw.get("broker")
    if broker_raw:
        broker = BrokerConnection(
            status=_opt_str(broker_raw.get("status")),
            last_success_at=_coerce_ts(broker_raw.get("last_success_at")),
            verification=_opt_str(broker_raw.get("verification")),
            last_verified_at=_coerce_ts(broker_raw.get("last_verified_at")),
        )

    return TelemetrySnapshot(
        bot_id=str(raw["bot_id"]),
        stage=parse_stage(str(raw["stage"])),
        captured_at=captured_at,
        last_heartbeat_at=_coerce_ts(raw.get("last_heartbeat_at")),
        runner_status_raw=_opt_str(raw.get("runner_status_raw")),
        activity_state=_opt_str(raw.get("activity_state")),
        jobs=jobs,
        evolution_status=_opt_str(raw.get("evolution_status")),
        rollup_metrics=metrics,
        consecutive_failures=_int(raw.get("consecutive_failures")),
        restart_count=_int(raw.get("restart_count")),
        circuit_breaker_open=_bool(raw.get("circuit_breaker_open")),
        maintenance_window=_bool(raw.get("maintenance_window")),
        paused_by=_opt_str(raw.get("paused_by")),
        mode=_opt_str(raw.get("mode")),
        is_trading_enabled=_bool(raw.get("is_trading_enabled"), default=True),
        last_quote_at=_coerce_ts(raw.get("last_quote_at")),
        backtests=backtests,
        evolution_rollbacks=_int(raw.get("evolution_rollbacks")),
        broker=broker,
    )


def iter_snapshots(path: Path) -> Iterator[TelemetrySnapshot]:
    if not path.exists():
        raise FileNotFoundError(path)

    suffix = path.suffix.lower()
    if suffix in {".jsonl", ".ndjson"}:
        with path.open("r", encoding="utf-8-sig") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                yield snapshot_from_record(json.loads(line))
        return

    if suffix == ".parquet":
        table = pq.read_table(path)
        for row in table.to_pylist():
            yield snapshot_from_record(_unflatten(row))
        return

    if suffix == ".csv":
        with path.open("r", encoding="utf-8-sig", newline="") as fh:
            reader = csv.DictReader(fh)
            for row in reader:
                yield snapshot_from_record(_unflatten(row))
        return

    raise ValueError(f"Unsupported snapshot file extension: {path.suffix}")


def load_snapshots(path: Path) -> list[TelemetrySnapshot]:
    return list(iter_snapshots(path))


def flatten_record(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Inverse of the CSV/Parquet column folding, used when exporting JSONL snapshots."""
    out: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _NESTED and isinstance(value, Mapping):
            for name, inner in value.items():
                out[f"{key}.{name}"] = inner
        else:
            out[key] = value
    return out
