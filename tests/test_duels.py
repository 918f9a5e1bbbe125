from partyrounds.services.danger import danger_range
from partyrounds.services.duels import DuelSide, impact, resolve_duel_outcome


def test_impact_is_capped():
    assert impact(20) == 0
    assert impact(25) == 5
    assert impact(60) == 10


def test_successful_search_takes_the_smugglers_impact():
    outcome = resolve_duel_outcome(DuelSide(1, True, 20), DuelSide(2, False, 27))
    assert outcome.deltas == {"1": 7, "2": -7}
    assert outcome.confiscated == {"1": 0, "2": 7}


def test_searching_a_legal_player_costs_at_least_one_point():
    outcome = resolve_duel_outcome(DuelSide(1, True, 20), DuelSide(2, False, 20))
    assert outcome.deltas == {"1": -1, "2": 0}


def test_unsearched_smuggler_gains_impact():
    outcome = resolve_duel_outcome(DuelSide(1, False, 20), DuelSide(2, False, 24))
    assert outcome.deltas == {"1": 0, "2": 4}


def test_outcome_is_mirrored_when_roles_are_swapped():
    cases = [(20, 27), (23, 20), (30, 31), (20, 20)]
    for tokens_a, tokens_b in cases:
        first = resolve_duel_outcome(DuelSide(1, True, tokens_a), DuelSide(2, False, tokens_b))
        mirror = resolve_duel_outcome(DuelSide(1, False, tokens_b), DuelSide(2, True, tokens_a))
        assert first.deltas["1"] == mirror.deltas["2"]
        assert first.deltas["2"] == mirror.deltas["1"]
        assert first.confiscated["2"] == mirror.confiscated["1"]


def test_suggested_danger_range():
    assert danger_range(4, 1, 1) == {"min": 20, "max": 31, "suggested": 26}
    terminal = danger_range(4, 3, 5)
    assert terminal["min"] == round(28 * 1.1 * 1.8)
    assert danger_range(0, 2, 3)["suggested"] == 0
