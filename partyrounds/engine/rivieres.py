"""
Orchestrateurs des Rivières (traversée en 5 niveaux, 3 manches).

Par niveau : set_danger (MJ, ou danger suggéré) -> décisions des joueurs sur
le bateau -> lock_decisions -> resolve_level. Le niveau suivant rouvre la
phase DECISIONS; la fin d'une manche remet tout le monde sur le bateau.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from partyrounds.services import audit, phase_machine, submissions
from partyrounds.services.danger import danger_range
from partyrounds.services.game_store import GameStore
from partyrounds.services.ledger import Ledger
from partyrounds.services.risk_pool import (
    A_TERRE,
    EN_BATEAU,
    SUCCESS,
    RiverLevelInput,
    resolve_level as resolve_risk_level,
)
from .errors import PreconditionFailed

logger = logging.getLogger(__name__)

GAME_TYPE = "RIVIERES"
FULL_CROSSING_LEVELS = 9


def _extra(store: GameStore) -> Dict[str, Any]:
    extra = store.game.setdefault("extra", {})
    extra.setdefault("level", 1)
    extra.setdefault("pot", 0)
    extra.setdefault("danger_raw", None)
    return extra


def _on_boat(store: GameStore):
    active = {p["player_id"] for p in store.active_players()}
    return [s for s in store.rows("river_states", status=EN_BATEAU) if s["player_id"] in active]


def suggested_danger(store: GameStore) -> Dict[str, int]:
    extra = _extra(store)
    return danger_range(
        len(_on_boat(store)),
        store.game["round"],
        int(extra["level"]),
        int(store.game["config"].get("river_levels", 5)),
    )


def set_danger(store: GameStore, danger: Optional[int] = None) -> Dict[str, Any]:
    game = store.game
    phase_machine.ensure_phase(game, "DECISIONS", game_type=GAME_TYPE)
    extra = _extra(store)
    if phase_machine.is_resolved(game, phase_machine.round_marker(game, "river", extra["level"])):
        raise PreconditionFailed("Niveau déjà résolu")
    suggestion = suggested_danger(store)
    value = suggestion["suggested"] if danger is None else int(danger)
    if value < 0:
        raise PreconditionFailed("Danger invalide", details={"danger": value})
    extra["danger_raw"] = value
    audit.mj_only(store, "DANGER_SET", f"Danger du niveau {extra['level']} : {value}",
                  {"level": extra["level"], "danger": value, "range": suggestion})
    return {"manche": game["round"], "level": extra["level"], "danger": value, "range": suggestion}


def lock_decisions(store: GameStore) -> Dict[str, Any]:
    """Fige les décisions du niveau; tous les joueurs encore sur le bateau doivent avoir décidé."""
    game = store.game
    phase_machine.ensure_phase(game, "DECISIONS", locked=False, game_type=GAME_TYPE)
    extra = _extra(store)
    level = int(extra["level"])
    decisions = submissions.latest(store, "river", level=level)
    boat = _on_boat(store)
    missing = [s["seat"] for s in boat if s["player_id"] not in decisions]
    if missing:
        raise PreconditionFailed("Décisions manquantes", details={"missing_seats": missing})

    effective = {}
    for state in boat:
        row = decisions[state["player_id"]]
        player = store.get_player(state["player_id"])
        stake = int(row.get("stake") or 0) if row.get("decision") == "RESTE" else 0
        note = None
        if stake < 0 or stake > int(player.get("tokens") or 0):
            stake, note = 0, f"Mise invalide ({row.get('stake')} > {player.get('tokens')} jetons)"
        effective[state["player_id"]] = {"stake_effective": stake, "note": note}
    submissions.freeze(store, "river", effective, level=level)
    phase_machine.lock_phase(game)
    audit.emit(store, "RIVER_LOCKED", public=f"Décisions du niveau {level} verrouillées",
               mj="Décisions verrouillées", mj_payload={"level": level, "effective": effective})
    return {"manche": game["round"], "level": level, "locked": len(effective)}


def _cached_level(store: GameStore, manche: int, level: int) -> Dict[str, Any]:
    row = store.first("river_levels", manche=manche, level=level) or {}
    return {"alreadyResolved": True, "manche": manche, "level": level, "result": row}


def resolve_level(
    store: GameStore,
    av2_player_id: Optional[str] = None,
    level: Optional[int] = None,
) -> Dict[str, Any]:
    game = store.game
    extra = _extra(store)
    manche = game["round"]
    if level is not None and phase_machine.is_resolved(game, f"{manche}:river:{level}"):
        return _cached_level(store, manche, level)
    phase_machine.ensure_phase(game, "DECISIONS", locked=True, game_type=GAME_TYPE)
    current = int(extra["level"])
    marker = phase_machine.round_marker(game, "river", current)
    if phase_machine.is_resolved(game, marker):
        return _cached_level(store, manche, current)
    if extra.get("danger_raw") is None:
        raise PreconditionFailed("Danger non défini pour ce niveau")

    config = game["config"]
    terminal = int(config.get("river_levels", 5))
    states = {s["player_id"]: s for s in store.rows("river_states")
              if (store.get_player(s["player_id"]) or {}).get("status") == "ACTIVE"}
    locked = submissions.latest(store, "river", level=current)
    decisions = {
        pid: {"decision": row.get("decision"), "stake": row.get("stake_effective", 0), "keryndes": row.get("keryndes")}
        for pid, row in locked.items()
        if states.get(pid, {}).get("status") == EN_BATEAU
    }
    outcome = resolve_risk_level(RiverLevelInput(
        level=current,
        terminal_level=terminal,
        danger=int(extra["danger_raw"]),
        pot=int(extra["pot"]),
        states=states,
        decisions=decisions,
        av2_player_id=av2_player_id,
        danger_reduction=int(config.get("danger_reduction", 20)),
        survivor_bonus=int(config.get("survivor_bonus", 50)),
        descent_bonus=int(config.get("descent_bonus", 10)),
    ))
    phase_machine.mark_resolved(game, marker)

    ledger = Ledger(store)
    for pid, stake in outcome.stakes.items():
        if stake:
            ledger.debit(store.get_player(pid), stake, f"mise niveau {current}")
    for pid in outcome.validated:
        states[pid]["validated_levels"] = int(states[pid].get("validated_levels") or 0) + 1
    for pid, status in outcome.status_changes.items():
        states[pid]["status"] = status
    for pid, lvl in outcome.descended_level.items():
        states[pid]["descended_level"] = lvl
    for pid in outcome.keryndes_consumed:
        states[pid]["keryndes_available"] = False
    for pid, amount in outcome.payouts.items():
        ledger.credit(store.get_player(pid), amount, f"partage cagnotte niveau {current}")

    names = {p["player_id"]: p["display_name"] for p in store.players.values()}
    row = store.insert("river_levels", {
        "manche": manche,
        "level": current,
        "outcome": outcome.outcome,
        "danger_raw": outcome.danger_raw,
        "danger_effective": outcome.danger_effective,
        "total_stakes": outcome.total_stakes,
        "pot_before": outcome.pot_before,
        "pot_after": outcome.pot_after,
        "av2_used_by": outcome.av2_used_by,
        "payouts": outcome.payouts,
        "forfeited": outcome.forfeited,
    })
    audit.emit(
        store, "RIVER_LEVEL_RESOLVED",
        public=f"Niveau {current} : {'traversée réussie' if outcome.outcome == SUCCESS else 'le bateau chavire'}",
        public_payload={"level": current, "outcome": outcome.outcome,
                        "payouts": {names[pid]: amount for pid, amount in outcome.payouts.items()}},
        mj=f"Niveau {current} : mises {outcome.total_stakes} vs danger {outcome.danger_effective}",
        mj_payload={**row, "stakes": outcome.stakes, "status_changes": outcome.status_changes},
    )

    still_on_boat = [s for s in states.values() if s["status"] == EN_BATEAU]
    result: Dict[str, Any] = {"manche": manche, "level": current, "result": row}
    if outcome.manche_over or not still_on_boat:
        if not outcome.manche_over and outcome.pot_after:
            _share_remaining_pot(store, states, outcome.pot_after, ledger)
        result.update(_end_manche(store, states))
    else:
        extra.update({"level": current + 1, "pot": outcome.pot_after, "danger_raw": None})
        phase_machine.unlock_phase(game)
    return result


def _share_remaining_pot(store: GameStore, states: Dict[str, Dict[str, Any]], pot: int, ledger: Ledger) -> None:
    """Bateau vide après un succès : la cagnotte est partagée entre les joueurs à terre."""
    ashore = [pid for pid, s in states.items() if s["status"] == A_TERRE]
    if not ashore:
        audit.mj_only(store, "POT_FORFEITED", f"Cagnotte perdue ({pot})", {"pot": pot})
        return
    share = pot // len(ashore)
    for pid in ashore:
        ledger.credit(store.get_player(pid), share, "partage cagnotte (bateau vide)")
    audit.emit(store, "POT_SHARED", public=f"Bateau vide : {share} jetons par joueur à terre")


def _end_manche(store: GameStore, states: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    game = store.game
    config = game["config"]
    if int(game["round"]) >= int(config.get("river_manches", 3)):
        scores = {}
        for player in store.active_players():
            levels = int((states.get(player["player_id"]) or {}).get("validated_levels") or 0)
            tokens = int(player.get("tokens") or 0)
            score = tokens if levels >= FULL_CROSSING_LEVELS else round(levels * tokens / FULL_CROSSING_LEVELS)
            player["victory_points"] = score
            scores[player["display_name"]] = score
        phase_machine.end_game(game)
        audit.emit(store, "GAME_ENDED", public="Fin de la traversée", public_payload={"scores": scores})
        return {"manche_over": True, "game_over": True, "scores": scores}

    for state in states.values():
        state["status"] = EN_BATEAU
        state["descended_level"] = None
    game["extra"].update({"level": 1, "pot": 0, "danger_raw": None})
    phase_machine.next_round(game)
    audit.emit(store, "MANCHE_STARTED", public=f"Manche {game['round']} : tout le monde remonte sur le bateau")
    return {"manche_over": True, "game_over": False}
