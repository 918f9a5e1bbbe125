import pytest

from partyrounds.engine.errors import IntegrityViolation
from partyrounds.services.ledger import Ledger


def test_debit_never_goes_negative(make_store):
    store = make_store("FORET")
    ledger = Ledger(store)
    player = store.active_players()[0]

    assert ledger.debit(player, 20, "test") == 30
    with pytest.raises(IntegrityViolation):
        ledger.debit(player, 31, "test")
    with pytest.raises(IntegrityViolation):
        ledger.credit(player, -1, "test")
    assert player["tokens"] == 30


def test_debit_floor_caps_to_balance(make_store):
    store = make_store("FORET")
    ledger = Ledger(store)
    player = store.active_players()[0]
    player["tokens"] = 4
    assert ledger.debit_floor(player, 10, "berserker") == 4
    assert player["tokens"] == 0


def test_items_are_consumed_except_permanent_ones(make_store):
    store = make_store("FORET")
    ledger = Ledger(store)
    player = store.active_players()[0]

    ledger.grant_item(player, "Totem de Rupture", 1, attack_usable=True)
    assert ledger.consume_item(player, "Totem de Rupture")
    assert not ledger.consume_item(player, "Totem de Rupture")
    assert "Totem de Rupture" not in ledger.inventory_of(player)

    weapon = next(name for name in ledger.inventory_of(player) if name.startswith("Par défaut"))
    assert ledger.consume_item(player, weapon)
    assert ledger.item_count(player, weapon) == 1


def test_failed_transaction_rolls_back_ledger_and_logs(make_store):
    store = make_store("FORET")
    player_id = store.active_players()[0]["player_id"]
    public_len = len(store.public_log)

    with pytest.raises(IntegrityViolation):
        with store.transaction():
            player = store.get_player(player_id)
            Ledger(store).debit(player, 10, "ok")
            store.append_log({"audience": "ALL", "kind": "X", "message": "x"})
            Ledger(store).debit(player, 1000, "ko")

    assert store.get_player(player_id)["tokens"] == 50
    assert len(store.public_log) == public_len


def test_failed_save_rolls_back_the_transaction(make_store, monkeypatch):
    store = make_store("FORET")
    player_id = store.active_players()[0]["player_id"]
    version = store.game["version"]
    public_len = len(store.public_log)

    def disk_full():
        raise OSError("disk full")

    monkeypatch.setattr(store, "save", disk_full)
    with pytest.raises(OSError):
        with store.transaction():
            Ledger(store).debit(store.get_player(player_id), 10, "achat")
            store.game["resolved"].append("1:bets")
            store.game["version"] += 1
            store.append_log({"audience": "ALL", "kind": "X", "message": "x"})

    assert store.get_player(player_id)["tokens"] == 50
    assert "1:bets" not in store.game["resolved"]
    assert store.game["version"] == version
    assert len(store.public_log) == public_len

    monkeypatch.undo()
    with store.transaction():
        Ledger(store).debit(store.get_player(player_id), 10, "achat")
    assert store.get_player(player_id)["tokens"] == 40
