import pytest

from partyrounds.engine import resolvers
from partyrounds.engine.errors import IntegrityViolation, PreconditionFailed
from partyrounds.engine.resolvers import RESOLVERS, run_step
from partyrounds.services import audit, phase_machine
from partyrounds.services.game_store import GameStore
from partyrounds.services.ledger import Ledger


@pytest.fixture
def published(monkeypatch):
    sent = []
    monkeypatch.setattr(resolvers, "ws_publish_safe", lambda game_id, records: sent.append(list(records)))
    monkeypatch.setattr(resolvers, "notify_safe", lambda game_id, records: None)
    return sent


def test_integrity_violation_rolls_back_then_is_traced(make_store, monkeypatch, published):
    store = make_store("FORET", humans=("Alice", "Bob"))
    alice = store.active_players()[0]
    tokens, version = alice["tokens"], store.game["version"]
    public_len, mj_len = len(store.public_log), len(store.mj_log)

    def half_done(store):
        player = store.active_players()[0]
        Ledger(store).debit(player, 10, "mise")
        phase_machine.mark_resolved(store.game, phase_machine.round_marker(store.game, "bets"))
        audit.emit(store, "BETS_CLOSED", public="Mises clôturées")
        Ledger(store).debit(player, 10_000, "mise impossible")
        return {}

    monkeypatch.setitem(RESOLVERS["FORET"].steps, "close-bets", half_done)

    with pytest.raises(IntegrityViolation) as raised:
        run_step(store, "close-bets")

    assert store.active_players()[0]["tokens"] == tokens
    assert "1:bets" not in store.game["resolved"]
    assert store.game["version"] == version
    assert len(store.public_log) == public_len

    assert len(store.mj_log) == mj_len + 1
    trace = store.mj_log[-1]
    assert trace["kind"] == "INTEGRITY_VIOLATION"
    assert trace["payload"]["step"] == "close-bets"
    assert trace["payload"]["errorId"] == raised.value.error_id
    assert published == [[trace]]

    reloaded = GameStore(store.game_id)
    reloaded.load()
    assert reloaded.active_players()[0]["tokens"] == tokens
    assert reloaded.mj_log[-1]["kind"] == "INTEGRITY_VIOLATION"


def test_unknown_step_is_rejected(make_store):
    store = make_store("INFECTION", humans=("Alice", "Bob", "Chloé"))
    with pytest.raises(PreconditionFailed) as raised:
        run_step(store, "close-bets")
    assert "resolve-round" in raised.value.details["available"]
