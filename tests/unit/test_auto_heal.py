import random
from datetime import UTC, datetime, timedelta

import pytest

from lifecycle_engine.core import blockers as bk
from lifecycle_engine.core.auto_heal import (
    BackoffConfig,
    in_backoff,
    restart_backoff_s,
    suggest_heal_actions,
)

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)


def test_exponential_backoff_is_capped() -> None:
    assert restart_backoff_s(0) == 30.0
    assert restart_backoff_s(1) == 60.0
    assert restart_backoff_s(4) == 480.0
    assert restart_backoff_s(5) == 900.0
    assert restart_backoff_s(50) == 900.0


def test_linear_backoff() -> None:
    cfg = BackoffConfig(strategy="linear")
    assert restart_backoff_s(2, cfg) == 90.0


def test_jitter_is_bounded_and_seeded() -> None:
    first = [restart_backoff_s(n, rng=random.Random(5)) for n in range(6)]
    second = [restart_backoff_s(n, rng=random.Random(5)) for n in range(6)]
    assert first == second
    for n, delay in enumerate(first):
        base = restart_backoff_s(n)
        assert 0.8 * base <= delay <= 1.2 * base


def test_invalid_backoff_config() -> None:
    with pytest.raises(ValueError):
        BackoffConfig(base_s=0.0)
    with pytest.raises(ValueError):
        restart_backoff_s(-1)


def test_stalled_runner_gets_restart() -> None:
    actions = suggest_heal_actions("PAPER", [bk.runner_stalled(300.0, 120.0)], as_of=NOW)
    assert [a.action for a in actions] == ["QUEUE_RUNNER_RESTART"]
    assert actions[0].blocker_code == "RUNNER_STALLED"


def test_restart_skipped_during_backoff() -> None:
    last = NOW - timedelta(seconds=10)
    assert in_backoff(1, last, NOW)
    assert not in_backoff(1, NOW - timedelta(seconds=31), NOW)
    actions = suggest_heal_actions(
        "PAPER",
        [bk.runner_error(1)],
        as_of=NOW,
        restart_attempts=1,
        last_restart_at=last,
    )
    assert actions == []


def test_mode_fix_targets_first_valid_mode() -> None:
    blocker = bk.mode_stage_mismatch("SHADOW", "LIVE", ("SIM_LIVE", "SHADOW"))
    actions = suggest_heal_actions("SHADOW", [blocker], as_of=NOW)
    assert actions[0].action == "FIX_MODE"
    assert actions[0].target_mode == "SIM_LIVE"


def test_non_healable_blockers_produce_nothing() -> None:
    blockers = [bk.circuit_breaker_open(5, 5, False), bk.heartbeat_warning(70.0, 60.0)]
    assert suggest_heal_actions("CANARY", blockers, as_of=NOW) == []


def test_duplicate_actions_collapse() -> None:
    blockers = [bk.runner_stalled(None, 120.0), bk.runner_error(2), bk.no_primary_runner("LIVE")]
    actions = suggest_heal_actions("LIVE", blockers, as_of=NOW)
    assert [a.action for a in actions] == ["QUEUE_RUNNER_RESTART", "QUEUE_RUNNER_START"]
