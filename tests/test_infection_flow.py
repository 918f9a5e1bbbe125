import pytest

from partyrounds.engine import setup
from partyrounds.engine.resolvers import run_step
from partyrounds.services import submissions
from partyrounds.services.ledger import Ledger
from partyrounds.services.store_registry import get_store

NAMES = ("Alice", "Bob", "Chloé", "David", "Emma", "Fanny", "Gus", "Hugo")
# siège 1 BA, 2-3 PV, 4-5 SY, 6 OC, 7 AE, 8 CV (porteur des anticorps)
ROLES = ("BA", "PV", "PV", "SY", "SY", "OC", "AE", "CV")


def _cast(store, roles=ROLES):
    ledger = Ledger(store)
    store.tables["inventory"] = []
    for player, role in zip(store.active_players(), roles):
        player.update(role=role, has_antibodies=role == "CV")
        for item, quantity, attack in setup.INFECTION_ITEMS.get(role, ()):
            ledger.grant_item(player, item, quantity, attack_usable=attack)
    return {p["seat"]: p for p in store.active_players()}


def _act(store, player, action, target=None, **extra):
    submissions.record(store, "infection", player, {"action": action, "target_seat": target, **extra})


def _kinds(entries, kind):
    return [e for e in entries if e["kind"] == kind]


def test_patient_zero_shots_and_oracle(make_store):
    store = make_store("INFECTION", humans=NAMES)
    seats = _cast(store)
    Ledger(store).grant_item(seats[4], "Gilet")
    _act(store, seats[2], "PATIENT_0", 6)
    _act(store, seats[3], "PATIENT_0", 6)
    _act(store, seats[1], "SHOT", 3)
    _act(store, seats[2], "SHOT", 4)
    _act(store, seats[6], "OC_LOOKUP", 2)

    result = run_step(store, "resolve-round", seed=1)

    assert result["deaths"] == [3] and result["gameEnded"] is False
    assert seats[3]["is_alive"] is False and seats[3]["death_cause"] == "SHOT"
    assert seats[4]["is_alive"] is True
    ledger = Ledger(store)
    assert ledger.item_count(seats[4], "Gilet") == 0
    assert ledger.item_count(seats[1], "Balle BA") == 0
    assert ledger.item_count(seats[6], "Boule de cristal") == 0
    assert seats[6]["is_carrier"] is True
    assert (seats[6]["will_contaminate_at_round"], seats[6]["will_die_at_round"]) == (2, 3)

    # Le public voit les morts et leur rôle, jamais le patient zéro ni la vision de l'OC
    shot = _kinds(store.public_log, "PLAYER_SHOT")
    assert len(shot) == 1 and shot[0]["payload"] == {"seat": 3, "role": "PV"}
    assert not _kinds(store.public_log, "PATIENT_0") and not _kinds(store.public_log, "OC_CONSULT")
    assert {e["payload"]["recipient_seat"] for e in _kinds(store.mj_log, "PATIENT_0")} == {2, 3}
    oracle = _kinds(store.mj_log, "OC_CONSULT")
    assert oracle[0]["payload"] == {"recipient_seat": 6, "target_seat": 2, "target_role": "PV"}
    assert _kinds(store.mj_log, "VEST_USED")[0]["payload"]["recipient_seat"] == 4

    again = run_step(store, "resolve-round", seed=1)
    assert again["alreadyResolved"] is True and again["shot_deaths"] == [3]
    assert len(store.rows("infection_rounds")) == 1


@pytest.mark.parametrize("corruption, sabotaged, ae_gain", [
    ({}, True, 10),
    ({8: 10}, False, 10),
    ({8: 10, 2: 8, 3: 8}, True, 16),
])
def test_corruption_decides_the_sabotage(make_store, corruption, sabotaged, ae_gain):
    store = make_store("INFECTION", humans=NAMES)
    seats = _cast(store)
    before = {seat: int(p["tokens"]) for seat, p in seats.items()}
    _act(store, seats[7], "SABOTAGE", 1)
    for seat, amount in corruption.items():
        _act(store, seats[seat], "CORRUPTION", 7, amount=amount)
    _act(store, seats[1], "SHOT", 2)

    result = run_step(store, "resolve-round", seed=1)

    assert result["sabotageActive"] is sabotaged
    assert seats[2]["is_alive"] is sabotaged
    assert Ledger(store).item_count(seats[1], "Balle BA") == 0
    assert int(seats[7].get("victory_points") or 0) == ae_gain
    assert bool(_kinds(store.mj_log, "SABOTAGE_SUCCESS")) is sabotaged
    payers = {8} if not sabotaged else ({2, 3} if ae_gain == 16 else set())
    for seat, amount in corruption.items():
        expected = before[seat] - amount if seat in payers else before[seat]
        assert seats[seat]["tokens"] == expected


def test_contamination_spreads_then_kills(make_store):
    store = make_store("INFECTION", humans=NAMES)
    seats = _cast(store)
    _act(store, seats[2], "PATIENT_0", 6)
    run_step(store, "resolve-round", seed=1)

    run_step(store, "next-round")
    assert store.game["round"] == 2
    assert Ledger(store).item_count(seats[1], "Balle BA") == 2
    round2 = run_step(store, "resolve-round", seed=1)
    assert round2["deaths"] == []
    assert seats[6]["is_contagious"] is True
    assert store.first("infection_rounds", manche=2)["new_carriers"] == [5, 7]

    run_step(store, "next-round")
    assert Ledger(store).item_count(seats[1], "Balle BA") == 2
    round3 = run_step(store, "resolve-round", seed=1)
    row = store.first("infection_rounds", manche=3)
    assert row["new_carriers"] == [4, 8]
    assert round3["deaths"] == [6] and row["virus_deaths"] == [6]
    assert seats[6]["death_cause"] == "VIRUS" and seats[6]["died_at_round"] == 3
    assert _kinds(store.public_log, "VIRUS_DEATH")[0]["payload"] == {"seat": 6, "role": "OC"}


def test_antidote_saves_a_carrier_and_stops_the_spread(make_store):
    store = make_store("INFECTION", humans=NAMES)
    seats = _cast(store)
    _act(store, seats[2], "PATIENT_0", 6)
    run_step(store, "resolve-round", seed=1)
    run_step(store, "next-round")

    _act(store, seats[2], "ANTIDOTE", 6, item_name="Antidote PV")
    _act(store, seats[3], "ANTIDOTE", 4, item_name="Antidote PV")
    run_step(store, "resolve-round", seed=1)

    assert seats[6]["immune_permanent"] is True and seats[6]["will_die_at_round"] is None
    assert store.first("infection_rounds", manche=2)["new_carriers"] == []
    assert Ledger(store).item_count(seats[2], "Antidote PV") == 0
    assert Ledger(store).item_count(seats[3], "Antidote PV") == 0
    recipients = sorted(e["payload"]["recipient_seat"] for e in _kinds(store.mj_log, "ANTIDOTE"))
    assert recipients == [2, 3, 6]

    run_step(store, "next-round")
    run_step(store, "resolve-round", seed=1)
    assert seats[6]["is_alive"] is True


def test_sy_mission_ends_the_game_with_role_scores(make_store):
    store = make_store("INFECTION", humans=NAMES)
    seats = _cast(store)
    store.game["extra"]["sy_success_count"] = 1
    _act(store, seats[4], "RECHERCHE_SY", 8)
    _act(store, seats[5], "RECHERCHE_SY", 8)
    _act(store, seats[8], "VOTE_TEST", 8)

    result = run_step(store, "resolve-round", seed=1)

    assert result["gameEnded"] is True and result["winner"] == "NON_PV"
    assert store.game["status"] == "ENDED"
    assert result["awarded"] == {"1": 50, "2": 0, "3": 0, "4": 60, "5": 60, "6": 50, "7": 0, "8": 50}
    assert seats[4]["victory_points"] == 60
    test = _kinds(store.mj_log, "ANTIBODY_TEST")
    assert test[0]["payload"] == {"recipient_seat": 8, "has_antibodies": True}
    assert _kinds(store.public_log, "GAME_ENDED")[0]["payload"]["winner"] == "NON_PV"


def test_dead_players_cannot_act_and_rounds_chain(client, admin_headers, api_game):
    game_id, tokens = api_game("INFECTION", names=NAMES)
    store = get_store(game_id)
    bob = store.player_by_token(tokens["Bob"])
    bob["is_alive"] = False

    shot = client.post("/submissions/infection", json={
        "gameId": game_id, "playerToken": tokens["Alice"], "action": "VOTE_TEST", "targetSeat": bob["seat"]})
    assert shot.status_code == 200, shot.text
    shot = client.post("/submissions/infection", json={
        "gameId": game_id, "playerToken": tokens["Alice"], "action": "SHOT", "targetSeat": bob["seat"]})
    assert shot.status_code == 400
    dead = client.post("/submissions/infection", json={
        "gameId": game_id, "playerToken": tokens["Bob"], "action": "VOTE_TEST", "targetSeat": 1})
    assert dead.status_code == 403

    early = client.post("/infection/next-round", json={"gameId": game_id}, headers=admin_headers)
    assert early.status_code == 400
    resolved = client.post("/infection/resolve-round", json={"gameId": game_id, "seed": 2}, headers=admin_headers)
    assert resolved.status_code == 200, resolved.text
    if not resolved.json()["result"]["gameEnded"]:
        nxt = client.post("/infection/next-round", json={"gameId": game_id}, headers=admin_headers)
        assert nxt.status_code == 200, nxt.text
        assert store.game["round"] == 2 and store.game["phase_locked"] is False
