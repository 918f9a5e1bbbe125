from partyrounds.services.store_registry import get_store


def _post(client, path, payload, headers=None, status=200):
    response = client.post(path, json=payload, headers=headers)
    assert response.status_code == status, response.text
    return response.json()


def _decide(client, game_id, token, decision, stake=0, status=200):
    return _post(client, "/submissions/river", {"gameId": game_id, "playerToken": token,
                                                "decision": decision, "stake": stake}, status=status)


def test_two_levels_then_capsize(client, admin_headers, api_game):
    game_id, tokens = api_game("RIVIERES", names=("Alice", "Bob"))
    store = get_store(game_id)

    suggested = client.get(f"/rivieres/{game_id}/danger-range", headers=admin_headers).json()["range"]
    assert suggested == {"min": 10, "max": 15, "suggested": 12}

    # Niveau 1 : 10 + 10 > 10 -> traversée réussie
    _post(client, "/rivieres/set-danger", {"gameId": game_id, "danger": 10}, admin_headers)
    _decide(client, game_id, tokens["Alice"], "RESTE", 10)
    _post(client, "/rivieres/lock-decisions", {"gameId": game_id}, admin_headers, status=400)
    _decide(client, game_id, tokens["Bob"], "RESTE", 10)
    _post(client, "/rivieres/lock-decisions", {"gameId": game_id}, admin_headers)
    level1 = _post(client, "/rivieres/resolve-level", {"gameId": game_id}, admin_headers)["result"]
    assert level1["result"]["outcome"] == "SUCCESS"
    assert store.game["extra"]["level"] == 2 and store.game["extra"]["pot"] == 20

    cached = _post(client, "/rivieres/resolve-level", {"gameId": game_id, "level": 1}, admin_headers)["result"]
    assert cached["alreadyResolved"] is True
    assert len(store.rows("river_levels", manche=1, level=1)) == 1
    assert {p["display_name"]: p["tokens"] for p in store.active_players()} == {"Alice": 90, "Bob": 90}

    # Niveau 2 : Bob descend, Alice seule ne couvre pas le danger
    _post(client, "/rivieres/set-danger", {"gameId": game_id, "danger": 100}, admin_headers)
    _decide(client, game_id, tokens["Alice"], "RESTE", 5)
    _decide(client, game_id, tokens["Bob"], "DESCENDS", 30)
    _post(client, "/rivieres/lock-decisions", {"gameId": game_id}, admin_headers)
    level2 = _post(client, "/rivieres/resolve-level", {"gameId": game_id}, admin_headers)["result"]
    assert level2["result"]["outcome"] == "FAIL"
    assert level2["manche_over"] is True and level2["game_over"] is False

    # Bob récupère la cagnotte (20 + 5) plus le bonus de descente (niveau 2 x 10)
    assert {p["display_name"]: p["tokens"] for p in store.active_players()} == {"Alice": 85, "Bob": 135}
    assert store.game["round"] == 2
    assert store.game["extra"] == {"level": 1, "pot": 0, "danger_raw": None}
    assert all(s["status"] == "EN_BATEAU" for s in store.rows("river_states"))


def test_over_stake_is_zeroed_at_lock(client, admin_headers, api_game):
    game_id, tokens = api_game("RIVIERES", names=("Alice",))
    store = get_store(game_id)
    _decide(client, game_id, tokens["Alice"], "RESTE", 500)
    _post(client, "/rivieres/lock-decisions", {"gameId": game_id}, admin_headers)
    _post(client, "/rivieres/resolve-level", {"gameId": game_id}, admin_headers, status=400)

    _post(client, "/rivieres/set-danger", {"gameId": game_id, "danger": 0}, admin_headers)
    result = _post(client, "/rivieres/resolve-level", {"gameId": game_id}, admin_headers)["result"]

    assert result["result"]["total_stakes"] == 0
    assert result["result"]["outcome"] == "FAIL"
    assert store.get_player(next(iter(store.players)))["tokens"] == 100
