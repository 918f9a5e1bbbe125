"""
Orchestrateurs du Sheriff.

CHOICES (visa + jetons entrants) -> lock_choices -> DUELS (next_duel /
resolve_duel, un duel actif à la fois) -> create_final_duel -> FINAL_DUEL
(lock_final_choices, resolve_duel) -> fin de partie.

Les gains/pertes de chaque duel s'accumulent dans un score courant
(`extra.deltas`, par siège). Le duel final verse ce score courant dans les
points de victoire, une seule fois.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional

from partyrounds.services import audit, phase_machine, submissions
from partyrounds.services.duels import DuelSide, resolve_duel_outcome
from partyrounds.services.game_store import GameStore
from partyrounds.services.ledger import Ledger
from partyrounds.utils.team_utils import random_pairs
from .errors import NotFound, PreconditionFailed

logger = logging.getLogger(__name__)

GAME_TYPE = "SHERIFF"
VISA_VICTORY_POINTS = "VICTORY_POINTS"
VISA_COMMON_POOL = "COMMON_POOL"


def _deltas(store: GameStore) -> Dict[str, int]:
    return store.game.setdefault("extra", {}).setdefault("deltas", {})


def _add_delta(store: GameStore, seat: int, delta: int) -> None:
    deltas = _deltas(store)
    deltas[str(seat)] = int(deltas.get(str(seat), 0)) + int(delta)


# ---------------------------------------------------------------------------
# Choix
# ---------------------------------------------------------------------------

def lock_choices(store: GameStore, seed: Optional[Any] = None) -> Dict[str, Any]:
    """Fige visas et jetons entrants, applique le coût des visas, tire les duels."""
    game = store.game
    phase_machine.ensure_phase(game, "CHOICES", game_type=GAME_TYPE)
    marker = phase_machine.round_marker(game, "choices")
    if phase_machine.is_resolved(game, marker):
        raise PreconditionFailed("Choix déjà verrouillés")

    phase_machine.lock_phase(game)
    phase_machine.mark_resolved(game, marker)

    config = game["config"]
    legal = int(config.get("legal_tokens", 20))
    pool_cost = int(config.get("visa_pool_cost", 10))
    extra = game.setdefault("extra", {})
    ledger = Ledger(store)
    chosen = submissions.latest(store, "sheriff_choice", stage="INITIAL")

    effective: Dict[str, Dict[str, Any]] = {}
    visas = []
    for player in store.active_players():
        row = chosen.get(player["player_id"]) or {}
        visa = row.get("visa_choice") or VISA_VICTORY_POINTS
        tokens = max(legal, int(row.get("tokens_entering") or legal))
        note = None if row else "Choix par défaut"
        if visa == VISA_COMMON_POOL and int(extra.get("common_pool", 0)) < pool_cost:
            visa, note = VISA_VICTORY_POINTS, "Cagnotte commune épuisée"
        if visa == VISA_COMMON_POOL:
            extra["common_pool"] = int(extra["common_pool"]) - pool_cost
            cost = 0
        else:
            cost = math.floor(int(player.get("victory_points") or 0) * float(config.get("visa_pv_ratio", 0.2)))
            _add_delta(store, player["seat"], -cost)
        ledger.set_tokens(player, tokens, "jetons entrants")
        effective[player["player_id"]] = {"visa_choice": visa, "tokens_entering": tokens, "visa_cost": cost,
                                          "note": note}
        visas.append({"seat": player["seat"], "display_name": player["display_name"], "visa": visa,
                      "cost": cost, "tokens_entering": tokens})
    submissions.freeze(store, "sheriff_choice", effective, stage="INITIAL")

    seats = [p["seat"] for p in store.active_players()]
    mates = {p["seat"]: p["mate_seat"] for p in store.active_players() if p.get("mate_seat")}
    pairs, unpaired = random_pairs(seats, mates, seed=seed)
    duels = []
    for order, (first, second) in enumerate(pairs, start=1):
        duels.append(store.insert("duels", {
            "round": game["round"], "order": order, "seat1": first, "seat2": second,
            "status": "PENDING", "is_final": False,
        }))
    extra["unpaired_seats"] = unpaired
    extra["common_pool_pending"] = 0

    names = {p["seat"]: p["display_name"] for p in store.active_players()}
    audit.emit(
        store, "CHOICES_LOCKED",
        public="Duels : " + ", ".join(f"{names[d['seat1']]} vs {names[d['seat2']]}" for d in duels),
        public_payload={"duels": [{"order": d["order"], "seat1": d["seat1"], "seat2": d["seat2"]} for d in duels],
                        "unpaired": unpaired},
        mj="Choix verrouillés",
        mj_payload={"visas": visas, "common_pool": extra.get("common_pool")},
    )
    phase_machine.advance_phase(game, "DUELS")
    return {"duels": duels, "unpaired": unpaired, "visas": visas}


# ---------------------------------------------------------------------------
# Duels
# ---------------------------------------------------------------------------

def next_duel(store: GameStore) -> Dict[str, Any]:
    game = store.game
    phase_machine.ensure_phase(game, "DUELS", game_type=GAME_TYPE)
    if store.rows("duels", status="ACTIVE"):
        raise PreconditionFailed("Un duel est déjà en cours")
    pending = sorted(store.rows("duels", status="PENDING", is_final=False), key=lambda d: d["order"])
    if not pending:
        return {"finished": True, "duel": None}
    duel = pending[0]
    duel["status"] = "ACTIVE"
    audit.emit(store, "DUEL_STARTED", public=f"Duel {duel['order']} : sièges {duel['seat1']} et {duel['seat2']}",
               public_payload={"duel_id": duel["id"], "seat1": duel["seat1"], "seat2": duel["seat2"]})
    return {"finished": False, "duel": duel}


def _tokens_entering(store: GameStore, seat: int, stage: str) -> int:
    legal = int(store.game["config"].get("legal_tokens", 20))
    player = store.player_by_seat(seat)
    rows = submissions.latest(store, "sheriff_choice", stage=stage)
    row = rows.get(player["player_id"]) if player else None
    return int((row or {}).get("tokens_entering") or legal)


def resolve_duel(store: GameStore, duel_id: str) -> Dict[str, Any]:
    game = store.game
    phase_machine.ensure_in_game(game)
    duel = store.first("duels", id=duel_id)
    if duel is None:
        raise NotFound("Duel introuvable", details={"duelId": duel_id})
    if duel["status"] == "RESOLVED":
        raise PreconditionFailed("Duel déjà résolu", details={"duelId": duel_id})
    if duel["status"] != "ACTIVE":
        raise PreconditionFailed("Le duel n'est pas actif", details={"duelId": duel_id, "status": duel["status"]})
    expected = "FINAL_DUEL" if duel.get("is_final") else "DUELS"
    phase_machine.ensure_phase(game, expected, game_type=GAME_TYPE)

    decisions = submissions.latest(store, "duel_decision", duel_id=duel_id)
    by_seat = {row["seat"]: row for row in decisions.values()}
    missing = [s for s in (duel["seat1"], duel["seat2"]) if s not in by_seat]
    if missing:
        raise PreconditionFailed("Décisions de duel manquantes", details={"missing_seats": missing})

    marker = phase_machine.round_marker(game, "duel", duel_id)
    phase_machine.mark_resolved(game, marker)

    config = game["config"]
    legal = int(config.get("legal_tokens", 20))
    stage = "FINAL" if duel.get("is_final") else "INITIAL"
    first, second = (
        DuelSide(seat, bool(by_seat[seat].get("searches")), _tokens_entering(store, seat, stage))
        for seat in (duel["seat1"], duel["seat2"])
    )
    outcome = resolve_duel_outcome(first, second, legal_tokens=legal,
                                   max_impact=int(config.get("duel_max_impact", 10)))

    ledger = Ledger(store)
    for seat, delta in outcome.deltas.items():
        _add_delta(store, int(seat), delta)
        if outcome.confiscated[seat]:
            ledger.set_tokens(store.player_by_seat(int(seat)), legal, "confiscation")
    submissions.freeze(store, "duel_decision",
                       {row["player_id"]: {"effective": bool(row.get("searches"))} for row in decisions.values()},
                       duel_id=duel_id)
    duel.update({"status": "RESOLVED", "deltas": outcome.deltas, "confiscated": outcome.confiscated,
                 "summary": outcome.summary})

    audit.emit(
        store, "DUEL_RESOLVED",
        public=f"Duel {duel['order']} résolu",
        public_payload={"duel_id": duel_id, "deltas": outcome.deltas},
        mj=" / ".join(f"siège {seat}: {text}" for seat, text in outcome.summary.items()),
        mj_payload={"duel_id": duel_id, "deltas": outcome.deltas, "confiscated": outcome.confiscated,
                    "searches": {str(side.seat): side.searches for side in (first, second)},
                    "tokens_entering": {str(side.seat): side.tokens_entering for side in (first, second)}},
    )
    result = {"duel": duel}
    if duel.get("is_final"):
        result["final_scores"] = _commit_scores(store)
    return result


# ---------------------------------------------------------------------------
# Duel final
# ---------------------------------------------------------------------------

def create_final_duel(store: GameStore) -> Dict[str, Any]:
    """Challenger (score courant le plus bas, plus petit siège en cas d'égalité) contre le joueur non apparié."""
    game = store.game
    phase_machine.ensure_phase(game, "DUELS", game_type=GAME_TYPE)
    if store.rows("duels", status="PENDING") or store.rows("duels", status="ACTIVE"):
        raise PreconditionFailed("Tous les duels doivent être résolus avant le duel final")
    if store.first("duels", is_final=True):
        raise PreconditionFailed("Duel final déjà créé")

    deltas = _deltas(store)
    seats = [p["seat"] for p in store.active_players()]
    unpaired = [s for s in (game.get("extra") or {}).get("unpaired_seats") or [] if s in seats]
    candidates = [s for s in seats if s not in unpaired]
    if not candidates:
        raise PreconditionFailed("Pas assez de joueurs pour un duel final")
    challenger = min(candidates, key=lambda s: (int(deltas.get(str(s), 0)), s))
    if unpaired:
        opponent = unpaired[0]
    else:
        others = [s for s in seats if s != challenger]
        if not others:
            raise PreconditionFailed("Pas assez de joueurs pour un duel final")
        opponent = max(others, key=lambda s: (int(deltas.get(str(s), 0)), -s))

    order = max([d["order"] for d in store.tables["duels"]] or [0]) + 1
    duel = store.insert("duels", {
        "round": game["round"], "order": order, "seat1": challenger, "seat2": opponent,
        "status": "PENDING_RECHOICE", "is_final": True,
    })
    phase_machine.advance_phase(game, "FINAL_DUEL")
    audit.emit(store, "FINAL_DUEL_CREATED",
               public=f"Duel final : siège {challenger} contre siège {opponent}",
               public_payload={"duel_id": duel["id"], "seat1": challenger, "seat2": opponent},
               mj="Duel final créé", mj_payload={"deltas": dict(deltas)})
    return {"duel": duel}


def lock_final_choices(store: GameStore) -> Dict[str, Any]:
    """Fige les jetons entrants des deux finalistes et active le duel final."""
    game = store.game
    phase_machine.ensure_phase(game, "FINAL_DUEL", game_type=GAME_TYPE)
    duel = store.first("duels", is_final=True)
    if duel is None:
        raise NotFound("Duel final introuvable")
    if duel["status"] != "PENDING_RECHOICE":
        raise PreconditionFailed("Choix du duel final déjà verrouillés", details={"status": duel["status"]})

    legal = int(game["config"].get("legal_tokens", 20))
    chosen = submissions.latest(store, "sheriff_choice", stage="FINAL")
    ledger = Ledger(store)
    effective = {}
    for seat in (duel["seat1"], duel["seat2"]):
        player = store.player_by_seat(seat)
        if player is None:
            raise PreconditionFailed("Finaliste absent", details={"seat": seat})
        row = chosen.get(player["player_id"]) or {}
        tokens = max(legal, int(row.get("tokens_entering") or legal))
        ledger.set_tokens(player, tokens, "jetons entrants (final)")
        effective[player["player_id"]] = {"tokens_entering": tokens}
    submissions.freeze(store, "sheriff_choice", effective, stage="FINAL")
    duel["status"] = "ACTIVE"
    audit.emit(store, "FINAL_DUEL_STARTED", public="Le duel final commence",
               mj="Jetons du duel final", mj_payload={"tokens": effective})
    return {"duel": duel}


def _commit_scores(store: GameStore) -> Dict[str, int]:
    game = store.game
    marker = phase_machine.round_marker(game, "final_commit")
    if phase_machine.is_resolved(game, marker):
        raise PreconditionFailed("Scores déjà versés")
    phase_machine.mark_resolved(game, marker)
    ledger = Ledger(store)
    deltas = _deltas(store)
    final = {}
    for player in store.active_players():
        delta = int(deltas.get(str(player["seat"]), 0))
        final[player["display_name"]] = ledger.add_victory_points(player, delta, "score courant sheriff")
    phase_machine.end_game(game)
    audit.emit(store, "GAME_ENDED", public="Fin du Sheriff", public_payload={"victory_points": final},
               mj="Scores courants versés", mj_payload={"deltas": dict(deltas)})
    return final
