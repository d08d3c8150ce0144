from __future__ import annotations

import argparse
import json
import random
from datetime import UTC, datetime, timedelta
from pathlib import Path

from lifecycle_engine.core.types import STAGE_ORDER

_RUNNER_STATUSES = ["running", "running", "running", "paused", "error", "stopped", "starting"]
_ACTIVITY = ["SCANNING", "SIGNAL", "TRADING"]
_MODES = {
    "TRIALS": "BACKTEST_ONLY",
    "PAPER": "SIM_LIVE",
    "SHADOW": "SHADOW",
    "CANARY": "LIVE",
    "LIVE": "LIVE",
}


def _generate_fleet(count: int, captured_at: datetime, seed: int) -> list[dict[str, object]]:
    rng = random.Random(seed)
    rows: list[dict[str, object]] = []
    for idx in range(count):
        stage = STAGE_ORDER[idx % len(STAGE_ORDER)]
        heartbeat_age = rng.choice([5, 20, 45, 75, 150, 600])
        trades = rng.randint(0, 90)
        row: dict[str, object] = {
            "bot_id": f"bot-{idx:03d}",
            "stage": stage,
            "captured_at": captured_at.isoformat(),
            "last_heartbeat_at": (captured_at - timedelta(seconds=heartbeat_age)).isoformat(),
            "runner_status_raw": None if stage == "TRIALS" else rng.choice(_RUNNER_STATUSES),
            "activity_state": rng.choice(_ACTIVITY),
            "mode": _MODES[stage],
            "consecutive_failures": rng.choice([0, 0, 0, 1, 2, 6]),
            "restart_count": rng.choice([0, 0, 1, 2, 5]),
            "evolution_rollbacks": rng.choice([0, 0, 1, 2]),
            "jobs": {
                "backtests_running": rng.choice([0, 0, 1]),
                "backtests_queued": rng.choice([0, 1]),
                "evolve_queued": rng.choice([0, 0, 1]),
            },
            "backtests": {
                "completed": rng.randint(0, 12),
                "failed": rng.randint(0, 3),
                "last_completed_at": (
                    captured_at - timedelta(days=rng.uniform(0.1, 12.0))
                ).isoformat(),
                "last_status": "completed",
            },
            "rollup_metrics": {
                "trades": trades,
                "win_rate": round(rng.uniform(30.0, 65.0), 2),
                "profit_factor": round(rng.uniform(0.7, 2.2), 3),
                "sharpe": round(rng.uniform(-0.5, 2.0), 3),
                "max_drawdown_pct": round(rng.uniform(2.0, 30.0), 2),
                "expectancy": round(rng.uniform(-15.0, 40.0), 2),
                "last_trade_at": (captured_at - timedelta(days=rng.uniform(0.0, 10.0))).isoformat(),
                "consecutive_losing_days": rng.choice([0, 0, 1, 2, 3, 4]),
            },
        }
        if stage in ("SHADOW", "CANARY", "LIVE"):
            row["broker"] = {
                "status": rng.choice(["CONNECTED", "CONNECTED", "DISCONNECTED"]),
                "last_success_at": captured_at.isoformat(),
                "verification": rng.choice(["VERIFIED", "VERIFIED", "UNVERIFIED"]),
            }
        rows.append(row)
    return rows


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--count", type=int, default=25)
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--output", default="data/snapshots/sample_fleet.jsonl")
    args = parser.parse_args()

    captured_at = datetime(2025, 1, 6, 14, 30, tzinfo=UTC)
    rows = _generate_fleet(args.count, captured_at, args.seed)

    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8") as fh:
        for row in rows:
            fh.write(json.dumps(row) + "\n")
    print(f"Wrote {len(rows)} snapshots to {out_path}")


if __name__ == "__main__":
    main()
