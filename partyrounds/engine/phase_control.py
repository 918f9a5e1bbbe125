"""
Commandes MJ sur la machine à phases : verrouiller, déverrouiller (force
unlock), phase suivante, manche suivante.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from partyrounds.services import audit, phase_machine
from partyrounds.services.game_store import GameStore
from .errors import PreconditionFailed

ACTIONS = ("lock", "unlock", "next_phase", "next_round")


def manage_phase(store: GameStore, action: str, target: Optional[str] = None) -> Dict[str, Any]:
    game = store.game
    phase_machine.ensure_in_game(game)
    before = {"round": game["round"], "phase": game["phase"], "locked": game["phase_locked"]}
    if action == "lock":
        phase_machine.lock_phase(game)
    elif action == "unlock":
        phase_machine.unlock_phase(game)
    elif action == "next_phase":
        phase_machine.advance_phase(game, target)
    elif action == "next_round":
        phase_machine.next_round(game)
    else:
        raise PreconditionFailed("Action de phase inconnue", details={"action": action, "allowed": list(ACTIONS)})
    after = {"round": game["round"], "phase": game["phase"], "locked": game["phase_locked"],
             "status": game["status"]}
    audit.emit(store, "PHASE_OVERRIDE",
               public=f"Manche {after['round']} - phase {after['phase']}",
               public_payload={"round": after["round"], "phase": after["phase"]},
               mj=f"Commande MJ {action}", mj_payload={"before": before, "after": after})
    return after
