import pytest

from partyrounds.engine.errors import PreconditionFailed
from partyrounds.engine.phase_control import manage_phase
from partyrounds.services import phase_machine


def _game(game_type="FORET", **extra):
    game = {"game_id": "g", "game_type": game_type, "status": "LOBBY", "round": 0, "config": {}, "resolved": []}
    game.update(extra)
    return game


def test_start_and_advance_without_skipping():
    game = _game()
    phase_machine.start(game)
    assert (game["status"], game["round"], game["phase"]) == ("IN_GAME", 1, "PHASE1_MISES")

    with pytest.raises(PreconditionFailed):
        phase_machine.advance_phase(game, "PHASE3_SHOP")
    assert phase_machine.advance_phase(game) == "PHASE2_POSITIONS"
    assert phase_machine.advance_phase(game) == "PHASE3_SHOP"
    with pytest.raises(PreconditionFailed):
        phase_machine.advance_phase(game)


def test_every_transition_bumps_the_version():
    game = _game()
    phase_machine.start(game)
    version = game["version"]
    phase_machine.lock_phase(game)
    phase_machine.lock_phase(game)
    assert game["version"] == version + 1
    phase_machine.mark_resolved(game, phase_machine.round_marker(game, "bets"))
    assert game["resolved"] == ["1:bets"]
    assert game["version"] == version + 2


def test_next_round_ends_game_at_max_rounds():
    game = _game(config={"max_rounds": 2})
    phase_machine.start(game)
    assert phase_machine.next_round(game)
    assert game["round"] == 2 and game["phase"] == "PHASE1_MISES" and not game["phase_locked"]
    assert not phase_machine.next_round(game)
    assert game["status"] == "ENDED"


def test_ensure_phase_checks_lock_and_type():
    game = _game("RIVIERES")
    phase_machine.start(game)
    phase_machine.ensure_phase(game, "DECISIONS", locked=False, game_type="RIVIERES")
    with pytest.raises(PreconditionFailed):
        phase_machine.ensure_phase(game, "DECISIONS", locked=True)
    with pytest.raises(PreconditionFailed):
        phase_machine.ensure_phase(game, "DECISIONS", game_type="FORET")


def test_adventure_next_step_resets_round():
    game = _game(steps=["FORET", "SHERIFF"], step_index=0)
    phase_machine.start(game)
    phase_machine.next_round(game)
    assert phase_machine.next_step(game) == "SHERIFF"
    assert (game["round"], game["phase"]) == (1, "CHOICES")
    assert phase_machine.next_step(game) is None
    assert game["status"] == "ENDED"


def test_manage_phase_unlock_and_log(make_store):
    store = make_store("FORET")
    with store.transaction():
        manage_phase(store, "lock")
    assert store.game["phase_locked"]
    with store.transaction():
        result = manage_phase(store, "unlock")
    assert result["locked"] is False
    assert store.mj_log[-1]["kind"] == "PHASE_OVERRIDE"
    with pytest.raises(PreconditionFailed):
        manage_phase(store, "jump")
