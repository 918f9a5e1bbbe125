import pytest

from partyrounds.engine.errors import PreconditionFailed
from partyrounds.services.risk_pool import (
    A_TERRE,
    AV1_CANOT,
    AV2_REDUCE,
    CHAVIRE,
    EN_BATEAU,
    FAIL,
    SUCCESS,
    RiverLevelInput,
    resolve_level,
)


def _level(decisions, states=None, **kwargs):
    states = states or {pid: {"status": EN_BATEAU, "keryndes_available": False} for pid in decisions}
    params = {"level": 2, "terminal_level": 5, "danger": 40, "pot": 0}
    params.update(kwargs)
    return RiverLevelInput(states=states, decisions=decisions, **params)


def test_stakes_below_threshold_capsize_and_pay_the_only_retreated_player():
    states = {
        "a": {"status": EN_BATEAU},
        "b": {"status": EN_BATEAU},
        "c": {"status": A_TERRE, "descended_level": 1},
    }
    decisions = {
        "a": {"decision": "RESTE", "stake": 15},
        "b": {"decision": "RESTE", "stake": 10},
    }
    outcome = resolve_level(_level(decisions, states, pot=30, descent_bonus=0))

    assert outcome.outcome == FAIL
    assert outcome.total_stakes == 25
    assert outcome.status_changes == {"a": CHAVIRE, "b": CHAVIRE}
    assert outcome.payouts == {"c": 55}
    assert outcome.forfeited == 0


def test_no_beneficiary_forfeits_the_pot():
    decisions = {"a": {"decision": "RESTE", "stake": 15}, "b": {"decision": "RESTE", "stake": 10}}
    outcome = resolve_level(_level(decisions, pot=30))

    assert outcome.outcome == FAIL
    assert outcome.payouts == {}
    assert outcome.forfeited == 55
    assert outcome.manche_over


def test_threshold_must_be_strictly_exceeded():
    decisions = {"a": {"decision": "RESTE", "stake": 20}, "b": {"decision": "RESTE", "stake": 20}}
    assert resolve_level(_level(decisions)).outcome == FAIL
    decisions["b"]["stake"] = 21
    outcome = resolve_level(_level(decisions))
    assert outcome.outcome == SUCCESS
    assert outcome.validated == ["a", "b"]
    assert outcome.pot_after == 41
    assert not outcome.manche_over


def test_success_sends_leavers_ashore():
    decisions = {"a": {"decision": "RESTE", "stake": 50}, "b": {"decision": "DESCENDS"}}
    outcome = resolve_level(_level(decisions))
    assert outcome.status_changes == {"b": A_TERRE}
    assert outcome.descended_level == {"b": 2}


def test_terminal_level_adds_survivor_bonus_and_shares_the_pot():
    decisions = {"a": {"decision": "RESTE", "stake": 30}, "b": {"decision": "RESTE", "stake": 30}}
    outcome = resolve_level(_level(decisions, level=5, danger=10, pot=40))
    # 40 + 60 de mises + 2 x 50 de bonus
    assert outcome.pot_after == 200
    assert outcome.payouts == {"a": 100, "b": 100}
    assert outcome.manche_over


def test_canoe_lets_a_player_escape_a_capsize():
    states = {
        "a": {"status": EN_BATEAU, "keryndes_available": True},
        "b": {"status": EN_BATEAU, "keryndes_available": False},
    }
    decisions = {
        "a": {"decision": "RESTE", "stake": 5, "keryndes": AV1_CANOT},
        "b": {"decision": "RESTE", "stake": 5},
    }
    outcome = resolve_level(_level(decisions, states, descent_bonus=10))
    assert outcome.status_changes == {"a": A_TERRE, "b": CHAVIRE}
    assert outcome.keryndes_consumed == ["a"]
    assert outcome.payouts == {"a": 10 + 20}


def _av2_states():
    return {
        "a": {"status": EN_BATEAU, "keryndes_available": True},
        "b": {"status": EN_BATEAU, "keryndes_available": True},
    }


def test_single_av2_candidate_reduces_the_danger():
    decisions = {
        "a": {"decision": "RESTE", "stake": 15, "keryndes": AV2_REDUCE},
        "b": {"decision": "RESTE", "stake": 10},
    }
    outcome = resolve_level(_level(decisions, _av2_states()))
    assert outcome.av2_used_by == "a"
    assert outcome.danger_effective == 20
    assert outcome.outcome == SUCCESS


def test_ambiguous_av2_requires_a_designated_player():
    decisions = {
        "a": {"decision": "RESTE", "stake": 15, "keryndes": AV2_REDUCE},
        "b": {"decision": "RESTE", "stake": 10, "keryndes": AV2_REDUCE},
    }
    with pytest.raises(PreconditionFailed):
        resolve_level(_level(decisions, _av2_states()))

    outcome = resolve_level(_level(decisions, _av2_states(), av2_player_id="b"))
    assert outcome.av2_used_by == "b"
    assert outcome.keryndes_consumed == ["b"]


def test_designated_av2_player_must_be_a_candidate():
    decisions = {"a": {"decision": "RESTE", "stake": 15}}
    with pytest.raises(PreconditionFailed):
        resolve_level(_level(decisions, _av2_states(), av2_player_id="a"))
