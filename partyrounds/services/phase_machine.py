"""
Service: phase_machine.py
Machine à états des phases d'une partie.

La fiche partie (`store.game`) est l'enregistrement versionné :
{phase, round, phase_locked, resolved[], version, step_index}.
Chaque orchestrateur vérifie explicitement l'état attendu avant d'écrire;
toute violation est un refus (`PreconditionFailed`), jamais un rejeu silencieux.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple
import logging

from partyrounds.engine.errors import PreconditionFailed

logger = logging.getLogger(__name__)

PHASES: Dict[str, Tuple[str, ...]] = {
    "FORET": ("PHASE1_MISES", "PHASE2_POSITIONS", "PHASE3_SHOP"),
    "SHERIFF": ("CHOICES", "DUELS", "FINAL_DUEL"),
    "RIVIERES": ("DECISIONS",),
    "INFECTION": ("ACTIONS",),
}

GAME_STATUS_LOBBY = "LOBBY"
GAME_STATUS_IN_GAME = "IN_GAME"
GAME_STATUS_ENDED = "ENDED"


def phases_for(game: Dict[str, Any]) -> Tuple[str, ...]:
    return PHASES.get(game.get("game_type") or "", ())


def _touch(game: Dict[str, Any]) -> None:
    game["version"] = int(game.get("version") or 0) + 1


def round_marker(game: Dict[str, Any], step: str, *parts: Any) -> str:
    """Marqueur d'idempotence: `<round>:<step>[:<part>...]`."""
    chunks = [str(game.get("round")), step, *(str(p) for p in parts)]
    return ":".join(chunks)


def is_resolved(game: Dict[str, Any], marker: str) -> bool:
    return marker in (game.get("resolved") or [])


def mark_resolved(game: Dict[str, Any], marker: str) -> None:
    resolved = game.setdefault("resolved", [])
    if marker not in resolved:
        resolved.append(marker)
        _touch(game)


def clear_marker(game: Dict[str, Any], marker: str) -> None:
    resolved = game.get("resolved") or []
    if marker in resolved:
        resolved.remove(marker)
        _touch(game)


def ensure_in_game(game: Dict[str, Any]) -> None:
    if game.get("status") != GAME_STATUS_IN_GAME:
        raise PreconditionFailed("La partie n'est pas en cours", details={"status": game.get("status")})


def ensure_phase(
    game: Dict[str, Any],
    phase: str,
    *,
    locked: Optional[bool] = None,
    game_type: Optional[str] = None,
) -> None:
    """Vérifie type de jeu, phase courante et (optionnellement) l'état du verrou."""
    ensure_in_game(game)
    if game_type and game.get("game_type") != game_type:
        raise PreconditionFailed(
            f"Action réservée aux parties {game_type}",
            details={"game_type": game.get("game_type")},
        )
    if game.get("phase") != phase:
        raise PreconditionFailed(
            f"Action disponible uniquement en phase {phase}",
            details={"phase": game.get("phase"), "expected": phase},
        )
    if locked is True and not game.get("phase_locked"):
        raise PreconditionFailed("La phase doit être verrouillée", details={"phase": phase})
    if locked is False and game.get("phase_locked"):
        raise PreconditionFailed("La phase est verrouillée", details={"phase": phase})


def lock_phase(game: Dict[str, Any]) -> None:
    if not game.get("phase_locked"):
        game["phase_locked"] = True
        _touch(game)


def unlock_phase(game: Dict[str, Any]) -> None:
    if game.get("phase_locked"):
        game["phase_locked"] = False
        _touch(game)


def start(game: Dict[str, Any]) -> None:
    sequence = phases_for(game)
    if not sequence:
        raise PreconditionFailed("Type de jeu sans phases", details={"game_type": game.get("game_type")})
    game["status"] = GAME_STATUS_IN_GAME
    game["round"] = 1
    game["phase"] = sequence[0]
    game["phase_locked"] = False
    _touch(game)


def advance_phase(game: Dict[str, Any], target: Optional[str] = None) -> str:
    """
    Passe à la phase suivante (aucun saut autorisé). Si `target` est donné,
    il doit correspondre exactement à la phase suivante.
    """
    ensure_in_game(game)
    sequence = phases_for(game)
    current = game.get("phase")
    if current not in sequence:
        raise PreconditionFailed("Phase courante inconnue", details={"phase": current})
    index = sequence.index(current)
    if index + 1 >= len(sequence):
        raise PreconditionFailed("Dernière phase de la manche : utiliser next_round", details={"phase": current})
    nxt = sequence[index + 1]
    if target is not None and target != nxt:
        raise PreconditionFailed(
            "Transition de phase interdite",
            details={"from": current, "to": target, "expected": nxt},
        )
    game["phase"] = nxt
    game["phase_locked"] = False
    _touch(game)
    logger.info("game %s phase %s -> %s", game.get("game_id"), current, nxt)
    return nxt


def next_round(game: Dict[str, Any]) -> bool:
    """
    Manche suivante, retour à la première phase. Renvoie False (et termine la
    partie) si `max_rounds` est atteint.
    """
    ensure_in_game(game)
    max_rounds = (game.get("config") or {}).get("max_rounds")
    if max_rounds and int(game.get("round") or 0) >= int(max_rounds):
        end_game(game)
        return False
    sequence = phases_for(game)
    game["round"] = int(game.get("round") or 0) + 1
    game["phase"] = sequence[0]
    game["phase_locked"] = False
    _touch(game)
    logger.info("game %s round -> %s", game.get("game_id"), game["round"])
    return True


def end_game(game: Dict[str, Any]) -> None:
    game["status"] = GAME_STATUS_ENDED
    game["phase_locked"] = True
    _touch(game)


def next_step(game: Dict[str, Any]) -> Optional[str]:
    """
    Mode aventure : passe au jeu suivant de la séquence et remet la manche à 1.
    Renvoie le nouveau type de jeu, ou None si la séquence est terminée.
    """
    steps = game.get("steps") or []
    index = int(game.get("step_index") or 0) + 1
    if index >= len(steps):
        end_game(game)
        return None
    game["step_index"] = index
    game["game_type"] = steps[index]
    game["resolved"] = []
    game["extra"] = {}
    start(game)
    return game["game_type"]
