import random

import pytest

from conftest import FixedRandom
from core.exceptions import ValidationError
from core.outcome_authority import OverrideConfig, OutcomeAuthority


def test_round1_override_is_sticky():
    overrides = OverrideConfig()
    authority = OutcomeAuthority(overrides, rng=FixedRandom(choices=[5, 5]))

    overrides.set_round1_winner(2)

    assert authority.resolve_round1() == 2
    assert authority.resolve_round1() == 2


def test_round2_override_is_sticky_until_changed():
    overrides = OverrideConfig()
    authority = OutcomeAuthority(overrides, rng=FixedRandom(ints=[999]))

    overrides.set_round2_range(560)
    assert authority.resolve_round2() == 560
    assert authority.resolve_round2() == 560

    overrides.set_round2_range(100)
    assert authority.resolve_round2() == 100


def test_draws_used_without_override():
    authority = OutcomeAuthority(OverrideConfig(), rng=FixedRandom(choices=[4, 2], ints=[731]))

    assert authority.resolve_round1() == 4
    assert authority.resolve_round2() == 731
    assert authority.resolve_battle() == 2


def test_random_draws_stay_in_range():
    authority = OutcomeAuthority(OverrideConfig(), rng=random.Random(42))

    for _ in range(200):
        assert authority.resolve_round1() in (1, 2, 3, 4, 5)
        assert 100 <= authority.resolve_round2() <= 1000
        assert authority.resolve_battle() in (1, 2)


@pytest.mark.parametrize("winner", [0, 4, 5, -1, "2", True, None])
def test_round1_override_rejects_out_of_range(winner):
    overrides = OverrideConfig()
    with pytest.raises(ValidationError):
        overrides.set_round1_winner(winner)
    assert overrides.snapshot().round1_winner is None


@pytest.mark.parametrize("target", [99, 1001, 0, 550.5, None])
def test_round2_override_rejects_out_of_range(target):
    overrides = OverrideConfig()
    with pytest.raises(ValidationError):
        overrides.set_round2_range(target)
    assert overrides.snapshot().round2_range is None


def test_failed_override_keeps_previous_value():
    overrides = OverrideConfig(round1_winner=3, round2_range=400)

    with pytest.raises(ValidationError):
        overrides.set_round1_winner(9)

    assert overrides.snapshot().to_dict() == {"round1_winner": 3, "round2_range": 400}


def test_setting_one_override_keeps_the_other():
    overrides = OverrideConfig()
    overrides.set_round2_range(700)
    snapshot = overrides.set_round1_winner(1)

    assert snapshot.round1_winner == 1
    assert snapshot.round2_range == 700
