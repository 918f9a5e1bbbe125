import pytest

from partyrounds.services import bots, submissions
from partyrounds.services.bots import ForetBotConfig, RivieresBotConfig, config_for, stay_probability


def _decisions(store, seed):
    with store.transaction():
        return bots.synthesize(store, bots.make_rng(seed))


def test_foret_bets_are_reproducible_with_a_seed(make_store):
    first = make_store("FORET", humans=("Alice",), bots=3)
    second = make_store("FORET", humans=("Alice",), bots=3)

    a = [(d["seat"], d["amount"]) for d in _decisions(first, 42)]
    b = [(d["seat"], d["amount"]) for d in _decisions(second, 42)]
    assert a == b
    assert len(a) == 3
    assert all(0 <= amount <= 50 * 0.4 for _, amount in a)


def test_bots_never_submit_twice(make_store):
    store = make_store("FORET", humans=("Alice",), bots=2)
    assert len(_decisions(store, 1)) == 2
    assert _decisions(store, 2) == []
    assert len(store.rows("bets", round=1)) == 2


def test_humans_only_get_defaults_when_asked(make_store):
    store = make_store("FORET", humans=("Alice", "Bob"), bots=1)
    human = store.active_players()[0]
    with store.transaction():
        bots.synthesize_foret(store, bots.make_rng(3))
    assert not submissions.has_submission(store, "bet", human["player_id"])

    with store.transaction():
        defaults = bots.synthesize_foret(store, bots.make_rng(3), include_humans=True)
    assert {d["amount"] for d in defaults} == {5}
    rows = submissions.latest(store, "bet")
    assert rows[human["player_id"]]["source"] == submissions.SOURCE_AUTO


def test_per_game_overrides_are_applied(make_store):
    store = make_store("FORET", humans=(), bots=2, bot_config={"bet_min_ratio": 0.0, "bet_max_ratio": 0.0,
                                                                "unknown": 1})
    cfg = config_for(store, ForetBotConfig)
    assert cfg.bet_max_ratio == 0.0
    assert {d["amount"] for d in _decisions(store, 9)} == {0}


def test_stay_probability_is_clamped():
    cfg = RivieresBotConfig()
    assert stay_probability(1, 1, 0, 1, 10, cfg) == pytest.approx(0.95)
    assert stay_probability(3, 5, 9, 99, 500, cfg) == pytest.approx(0.20)


def test_rivieres_bots_decide_for_the_current_level(make_store):
    store = make_store("RIVIERES", humans=("Alice",), bots=2)
    decisions = _decisions(store, 5)
    assert len(decisions) == 2
    rows = submissions.latest(store, "river", level=1)
    assert all(row["source"] == submissions.SOURCE_BOT for row in rows.values())
    for row in rows.values():
        assert row["decision"] in ("RESTE", "DESCENDS")
        assert 0 <= row["stake"] <= 100


def test_sheriff_bots_choose_visa_and_tokens(make_store):
    store = make_store("SHERIFF", humans=(), bots=3)
    decisions = _decisions(store, 11)
    assert len(decisions) == 3
    for row in submissions.latest(store, "sheriff_choice", stage="INITIAL").values():
        assert row["visa_choice"] in ("VICTORY_POINTS", "COMMON_POOL")
        assert row["tokens_entering"] >= 20


def test_infection_bots_respect_roles(make_store):
    store = make_store("INFECTION", humans=(), bots=8, seed=4)
    decisions = {d["seat"]: d for d in _decisions(store, 4)}
    assert len(decisions) == 8
    for player in store.active_players():
        decision = decisions[player["seat"]]
        if player["role"] == "KK":
            assert decision["action"] is None
        if player["role"] == "PV":
            assert decision["action"] == "PATIENT_0"
            assert store.player_by_seat(decision["target_seat"])["role"] != "PV"
        if player["role"] == "SY":
            assert decision["action"] == "RECHERCHE_SY"
    sy_targets = {d["target_seat"] for d in decisions.values() if d["action"] == "RECHERCHE_SY"}
    assert len(sy_targets) == 1


def test_dead_infection_bots_neither_act_nor_get_targeted(make_store):
    store = make_store("INFECTION", humans=(), bots=8, seed=4)
    dead = store.active_players()[0]
    dead["is_alive"] = False
    decisions = _decisions(store, 4)
    assert dead["seat"] not in {d["seat"] for d in decisions}
    assert all(d.get("target_seat") != dead["seat"] for d in decisions)
