from __future__ import annotations

import argparse
import json
import logging
from collections.abc import Callable
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from lifecycle_engine.config import EngineConfig, load_engine_config
from lifecycle_engine.core.auto_heal import suggest_heal_actions
from lifecycle_engine.core.canonical_state import CanonicalBotState, evaluate_bot_state
from lifecycle_engine.observability.fleet import summarize_fleet
from lifecycle_engine.promotion.demotion import evaluate_demotion
from lifecycle_engine.promotion.engine import evaluate_snapshot
from lifecycle_engine.risk.sizing import AccountState, SizingInputError, size
from lifecycle_engine.risk.tiers import BotRiskConfig, get_instrument, get_risk_tier
from lifecycle_engine.telemetry.loaders import load_snapshots
from lifecycle_engine.telemetry.schemas import TelemetrySnapshot


def _json_default(value: object) -> object:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def _dump(payload: object, indent: int | None = None) -> str:
    return json.dumps(payload, indent=indent, default=_json_default)


def _engine_config(args: argparse.Namespace) -> EngineConfig:
    return load_engine_config(Path(args.config) if args.config else None)


def _evaluated(
    args: argparse.Namespace, cfg: EngineConfig
) -> list[tuple[TelemetrySnapshot, CanonicalBotState]]:
    snapshots = load_snapshots(Path(args.snapshots))
    if getattr(args, "bot_id", None):
        snapshots = [s for s in snapshots if s.bot_id == args.bot_id]
    return [(s, evaluate_bot_state(s, cfg.classifier, cfg.health)) for s in snapshots]


def _cmd_classify(args: argparse.Namespace) -> int:
    if not args.snapshots:
        print("No snapshots file. Use --snapshots PATH (JSONL, CSV or Parquet).")
        return 2

    cfg = _engine_config(args)
    for _, state in _evaluated(args, cfg):
        print(_dump(asdict(state)))
    return 0


def _cmd_evaluate_fleet(args: argparse.Namespace) -> int:
    if not args.snapshots:
        print("No snapshots file. Use --snapshots PATH (JSONL, CSV or Parquet).")
        return 2

    cfg = _engine_config(args)
    states = [state for _, state in _evaluated(args, cfg)]
    summary = summarize_fleet(states, worst_n=args.worst)
    print(_dump(asdict(summary), indent=2))
    return 0


def _cmd_promote(args: argparse.Namespace) -> int:
    if not args.snapshots:
        print("No snapshots file. Use --snapshots PATH (JSONL, CSV or Parquet).")
        return 2

    cfg = _engine_config(args)
    for snapshot, state in _evaluated(args, cfg):
        evaluation = evaluate_snapshot(
            snapshot, state, governance_approved=args.approved, config=cfg.promotion
        )
        print(_dump({"bot_id": snapshot.bot_id, **asdict(evaluation)}))
    return 0


def _cmd_demote(args: argparse.Namespace) -> int:
    if not args.snapshots:
        print("No snapshots file. Use --snapshots PATH (JSONL, CSV or Parquet).")
        return 2

    cfg = _engine_config(args)
    for snapshot, state in _evaluated(args, cfg):
        decision = evaluate_demotion(
            snapshot.stage,
            snapshot.rollup_metrics,
            blockers=state.blockers,
            config=cfg.demotion,
        )
        print(_dump({"bot_id": snapshot.bot_id, **asdict(decision)}))
    return 0


def _cmd_heal(args: argparse.Namespace) -> int:
    if not args.snapshots:
        print("No snapshots file. Use --snapshots PATH (JSONL, CSV or Parquet).")
        return 2

    cfg = _engine_config(args)
    for snapshot, state in _evaluated(args, cfg):
        actions = suggest_heal_actions(
            snapshot.stage,
            state.blockers,
            as_of=snapshot.captured_at,
            restart_attempts=snapshot.restart_count,
            config=cfg.backoff,
        )
        print(_dump({"bot_id": snapshot.bot_id, "actions": [asdict(a) for a in actions]}))
    return 0


def _cmd_size(args: argparse.Namespace) -> int:
    cfg = _engine_config(args)
    tier = get_risk_tier(args.tier, cfg.risk_tiers)
    tick_value = args.tick_value
    if args.instrument:
        tick_value = get_instrument(args.instrument).tick_value
    if tick_value is None:
        print("No tick value. Use --tick-value VALUE or --instrument SYMBOL.")
        return 2

    try:
        result = size(
            args.equity,
            tier,
            BotRiskConfig(
                risk_per_trade=args.risk_per_trade, max_contracts_per_trade=args.max_contracts
            ),
            args.stop_ticks,
            tick_value,
            account_state=AccountState(
                daily_pnl=args.daily_pnl,
                existing_position_contracts=args.existing_contracts,
                total_open_contracts=args.total_open,
            ),
        )
    except SizingInputError as exc:
        print(f"Cannot size: {exc}")
        return 2

    print(_dump({"tier": tier.name, **asdict(result)}, indent=2))
    return 0


def _cmd_tiers(args: argparse.Namespace) -> int:
    cfg = _engine_config(args)
    print(_dump({name: asdict(tier) for name, tier in cfg.risk_tiers.items()}, indent=2))
    return 0


def _add_snapshot_args(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("--snapshots", type=str, help="Path to snapshots (JSONL/CSV/Parquet)")
    cmd.add_argument("--bot-id", dest="bot_id", type=str, help="Only evaluate this bot")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lifecycle-engine")
    parser.add_argument("--config", type=str, help="Path to engine TOML config")
    parser.add_argument("--log-level", dest="log_level", default="WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    classify_cmd = sub.add_parser("classify", help="Canonical state for each bot snapshot")
    _add_snapshot_args(classify_cmd)
    classify_cmd.set_defaults(func=_cmd_classify)

    fleet = sub.add_parser("evaluate-fleet", help="Summarize canonical state across bots")
    _add_snapshot_args(fleet)
    fleet.add_argument("--worst", type=int, default=5, help="Bots to list by lowest health")
    fleet.set_defaults(func=_cmd_evaluate_fleet)

    promote = sub.add_parser("promote", help="Evaluate promotion gates to the next stage")
    _add_snapshot_args(promote)
    promote.add_argument("--approved", action="store_true", help="Governance approval granted")
    promote.set_defaults(func=_cmd_promote)

    demote = sub.add_parser("demote", help="Check whether bots still hold their stage")
    _add_snapshot_args(demote)
    demote.set_defaults(func=_cmd_demote)

    heal = sub.add_parser("heal", help="Suggest recovery actions for auto-healable blockers")
    _add_snapshot_args(heal)
    heal.set_defaults(func=_cmd_heal)

    size_cmd = sub.add_parser("size", help="Contracts per trade for an account and stop")
    size_cmd.add_argument("--equity", type=float, required=True)
    size_cmd.add_argument("--tier", type=str, default="moderate")
    size_cmd.add_argument("--stop-ticks", dest="stop_ticks", type=float, required=True)
    size_cmd.add_argument("--tick-value", dest="tick_value", type=float)
    size_cmd.add_argument("--instrument", type=str, help="CME symbol, e.g. ES or MNQ")
    size_cmd.add_argument("--risk-per-trade", dest="risk_per_trade", type=float)
    size_cmd.add_argument("--max-contracts", dest="max_contracts", type=int)
    size_cmd.add_argument("--daily-pnl", dest="daily_pnl", type=float, default=0.0)
    size_cmd.add_argument("--existing-contracts", dest="existing_contracts", type=int, default=0)
    size_cmd.add_argument("--total-open", dest="total_open", type=int, default=0)
    size_cmd.set_defaults(func=_cmd_size)

    tiers = sub.add_parser("tiers", help="Show risk tier presets")
    tiers.set_defaults(func=_cmd_tiers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    func: Callable[[argparse.Namespace], int] = args.func
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
