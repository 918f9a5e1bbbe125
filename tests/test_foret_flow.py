import pytest

from partyrounds.engine.errors import PreconditionFailed
from partyrounds.engine.resolvers import run_step
from partyrounds.services import phase_machine
from partyrounds.services.catalog import DEFAULT_WEAPON
from partyrounds.services.store_registry import get_store


def _tokens(client, game_id):
    players = client.get(f"/games/{game_id}").json()["players"]
    return {p["display_name"]: p["tokens"] for p in players}


def _post(client, path, payload, headers=None):
    response = client.post(path, json=payload, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def test_full_foret_round(client, admin_headers, api_game):
    game_id, tokens = api_game("FORET")

    # Mises : Chloé sur-mise (60 > 50) et perd sa mise
    for name, amount in (("Alice", 10), ("Bob", 10), ("Chloé", 60)):
        _post(client, "/submissions/bet", {"gameId": game_id, "playerToken": tokens[name], "amount": amount})
    ranking = _post(client, "/foret/close-bets", {"gameId": game_id}, admin_headers)["result"]["ranking"]
    assert [r["display_name"] for r in ranking] == ["Alice", "Bob", "Chloé"]
    assert ranking[2]["effective_bid"] == 0
    assert _tokens(client, game_id) == {"Alice": 40, "Bob": 40, "Chloé": 50}

    # Rejouer la clôture est refusé, sans débit supplémentaire
    again = client.post("/foret/close-bets", json={"gameId": game_id}, headers=admin_headers)
    assert again.status_code == 400
    body = again.json()
    assert body["success"] is False and len(body["errorId"]) == 8
    assert _tokens(client, game_id) == {"Alice": 40, "Bob": 40, "Chloé": 50}

    # Une mise après clôture est refusée
    late = client.post("/submissions/bet", json={"gameId": game_id, "playerToken": tokens["Bob"], "amount": 1})
    assert late.status_code == 400

    # Positions
    for name in ("Alice", "Bob"):
        _post(client, "/submissions/action", {
            "gameId": game_id, "playerToken": tokens[name], "desiredPosition": 1,
            "attackSlot": 1, "attack1": DEFAULT_WEAPON,
        })
    positions = _post(client, "/foret/publish-positions", {"gameId": game_id}, admin_headers)["result"]["positions"]
    assert {p["display_name"]: p["position"] for p in positions} == {"Alice": 1, "Bob": 2, "Chloé": 3}

    # Combat, puis rejeu sans effet
    combat = _post(client, "/foret/resolve-combat", {"gameId": game_id}, admin_headers)["result"]
    assert [a["display_name"] for a in combat["actions"]] == ["Alice", "Bob", "Chloé"]
    replay = _post(client, "/foret/resolve-combat", {"gameId": game_id}, admin_headers)["result"]
    assert replay["alreadyResolved"] is True
    store = get_store(game_id)
    assert len(store.rows("combat_results", round=1)) == 1
    assert store.game["phase"] == "PHASE3_SHOP"

    # Boutique
    shop = _post(client, "/foret/generate-shop", {"gameId": game_id, "seed": 3}, admin_headers)["result"]
    assert len(shop["items"]) == 5 and "Totem de Rupture" in shop["items"]
    regenerated = _post(client, "/foret/generate-shop", {"gameId": game_id, "seed": 4}, admin_headers)["result"]
    assert regenerated["alreadyResolved"] is True and regenerated["items"] == shop["items"]

    _post(client, "/submissions/shop", {"gameId": game_id, "playerToken": tokens["Alice"],
                                        "wantBuy": True, "itemName": "Totem de Rupture"})
    resolved = _post(client, "/foret/resolve-shop", {"gameId": game_id}, admin_headers)["result"]
    bought = [p for p in resolved["purchases"] if p["approved"]]
    assert [p["display_name"] for p in bought] == ["Alice"]
    cost = bought[0]["cost"]
    assert _tokens(client, game_id) == {"Alice": 40 - cost + 5, "Bob": 45, "Chloé": 55}
    assert store.game["round"] == 2 and store.game["phase"] == "PHASE1_MISES"

    replay = _post(client, "/foret/resolve-shop", {"gameId": game_id}, admin_headers)["result"]
    assert replay["alreadyResolved"] is True
    assert len(store.rows("purchases", round=1)) == len(resolved["purchases"])
    assert _tokens(client, game_id)["Alice"] == 40 - cost + 5


def test_public_log_hides_privileged_entries(client, admin_headers, api_game):
    game_id, tokens = api_game("FORET", names=("Alice", "Bob"))
    _post(client, "/foret/close-bets", {"gameId": game_id}, admin_headers)

    public = client.get(f"/logs/{game_id}/public", params={"playerToken": tokens["Alice"]})
    assert public.status_code == 200
    entries = public.json()["entries"]
    assert entries and all(e["audience"] == "ALL" for e in entries)
    assert all("effective_bid" not in str(e["payload"]) for e in entries)

    mj = client.get(f"/logs/{game_id}/mj", headers=admin_headers).json()["entries"]
    assert any(e["kind"] == "BETS_CLOSED" for e in mj)

    assert client.get(f"/logs/{game_id}/mj").status_code == 401
    assert client.get(f"/logs/{game_id}/public").status_code == 403


def test_only_host_can_orchestrate(client, admin_headers, api_game):
    game_id, _ = api_game("FORET", names=("Alice",))
    issued = _post(client, "/auth/tokens", {"displayName": "Intrus"}, admin_headers)
    headers = {"Authorization": f"Bearer {issued['token']}"}

    denied = client.post("/foret/close-bets", json={"gameId": game_id}, headers=headers)
    assert denied.status_code == 403
    assert client.post("/foret/close-bets", json={"gameId": game_id},
                       headers={"Authorization": "Bearer nope"}).status_code == 403
    assert client.post("/foret/close-bets", json={"gameId": game_id}).status_code == 401


def test_bot_decisions_endpoint_fills_missing_bets(client, admin_headers, api_game):
    game_id, _ = api_game("FORET", names=("Alice",))
    store = get_store(game_id)
    # ajout de bots impossible hors lobby : on vérifie le refus puis l'absence de décision
    refused = client.post("/games/bots", json={"gameId": game_id, "count": 2}, headers=admin_headers)
    assert refused.status_code == 400
    result = _post(client, "/bots/decisions", {"gameId": game_id, "seed": 1}, admin_headers)["result"]
    assert result["decisions"] == []
    assert store.rows("bets", round=1) == []


def test_locked_positions_without_rows_are_published_again(make_store, caplog):
    store = make_store("FORET", humans=("Alice", "Bob"))
    run_step(store, "close-bets")
    # état laissé par une publication interrompue : phase verrouillée, marqueur posé, aucune ligne
    with store.transaction():
        phase_machine.lock_phase(store.game)
        phase_machine.mark_resolved(store.game, phase_machine.round_marker(store.game, "positions"))
    assert store.rows("positions", round=1) == []

    with caplog.at_level("WARNING", logger="partyrounds.engine.foret"):
        result = run_step(store, "publish-positions")

    assert [p["position"] for p in result["positions"]] == [1, 2]
    assert len(store.rows("positions", round=1)) == 2
    assert store.game["resolved"].count("1:positions") == 1
    assert "positions marker without rows" in caplog.text
    with pytest.raises(PreconditionFailed):
        run_step(store, "publish-positions")


def test_resolve_shop_rejects_an_unresolved_other_round(client, admin_headers, api_game):
    game_id, tokens = api_game("FORET", names=("Alice", "Bob"))
    store = get_store(game_id)
    for step in ("close-bets", "publish-positions", "resolve-combat"):
        _post(client, f"/foret/{step}", {"gameId": game_id}, admin_headers)
    _post(client, "/foret/generate-shop", {"gameId": game_id, "seed": 3}, admin_headers)

    future = client.post("/foret/resolve-shop", json={"gameId": game_id, "manche": 4}, headers=admin_headers)
    assert future.status_code == 400
    assert future.json()["details"] == {"requested": 4, "round": 1}
    assert store.game["phase"] == "PHASE3_SHOP" and store.game["phase_locked"] is False
    assert store.rows("purchases") == []

    resolved = _post(client, "/foret/resolve-shop", {"gameId": game_id, "manche": 1}, admin_headers)
    assert "alreadyResolved" not in resolved["result"]
    assert store.game["round"] == 2
    cached = _post(client, "/foret/resolve-shop", {"gameId": game_id, "manche": 1}, admin_headers)
    assert cached["result"]["alreadyResolved"] is True
    other = client.post("/foret/resolve-shop", json={"gameId": game_id, "manche": 3}, headers=admin_headers)
    assert other.status_code == 400
