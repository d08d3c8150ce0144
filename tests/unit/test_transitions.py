from lifecycle_engine.promotion.transitions import validate_transition


def test_one_step_promotion() -> None:
    check = validate_transition("PAPER", "SHADOW")
    assert check.allowed
    assert check.kind == "promotion"


def test_promotion_cannot_skip_stages() -> None:
    check = validate_transition("PAPER", "CANARY")
    assert not check.allowed
    assert check.reason.startswith("Cannot skip stages")


def test_live_requires_governance() -> None:
    assert not validate_transition("CANARY", "LIVE").allowed
    assert validate_transition("CANARY", "LIVE", governance_approved=True).allowed


def test_demotions() -> None:
    assert validate_transition("LIVE", "CANARY").allowed
    assert not validate_transition("LIVE", "PAPER").allowed
    emergency = validate_transition("LIVE", "TRIALS", emergency=True)
    assert emergency.allowed
    assert emergency.kind == "emergency"
    assert not validate_transition("LIVE", "PAPER", emergency=True).allowed


def test_same_stage_is_not_a_transition() -> None:
    check = validate_transition("SHADOW", "SHADOW")
    assert not check.allowed
    assert check.kind == "none"
