"""
Routes de soumission des joueurs (authentifiées par `playerToken`).

Ces routes enregistrent des intentions : elles lisent les soldes et
l'inventaire pour valider, mais n'écrivent jamais dans le registre.
Avant verrouillage, une nouvelle soumission remplace la précédente.
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from partyrounds.deps.auth import player_from_token
from partyrounds.engine.errors import Forbidden, NotFound, PreconditionFailed
from partyrounds.models.submission import (
    ActionSubmit,
    BetSubmit,
    DuelDecisionSubmit,
    InfectionSubmit,
    PlayerRef,
    RiverSubmit,
    SheriffChoiceSubmit,
    ShopSubmit,
)
from partyrounds.services import submissions
from partyrounds.services.game_store import GameStore
from partyrounds.services.ledger import Ledger
from partyrounds.services.store_registry import get_store

router = APIRouter(prefix="/submissions", tags=["submissions"])

_TRANSPORT_FIELDS = {"game_id", "player_token"}


def _submit(payload: PlayerRef, category: str, check=None) -> Dict[str, Any]:
    store = get_store(payload.game_id)
    with store.transaction():
        player = player_from_token(store, payload.player_token)
        values = payload.model_dump(exclude=_TRANSPORT_FIELDS)
        if check is not None:
            values = check(store, player, values) or values
        row = submissions.record(store, category, player, values)
    return {"success": True, "submission": row}


@router.post("/bet")
def submit_bet(payload: BetSubmit):
    return _submit(payload, "bet")


@router.post("/action")
def submit_action(payload: ActionSubmit):
    def check(store: GameStore, player, values):
        slots = int(store.game["config"].get("battlefield_slots", 3))
        for key in ("attack_slot", "protection_slot"):
            slot = values.get(key)
            if slot is not None and not 1 <= slot <= slots:
                raise PreconditionFailed("Emplacement de champ de bataille invalide", details={key: slot})
    return _submit(payload, "action", check)


@router.post("/shop")
def submit_shop(payload: ShopSubmit):
    def check(store: GameStore, player, values):
        if values["want_buy"] and not values.get("item_name"):
            raise PreconditionFailed("Objet requis pour un achat")
    return _submit(payload, "shop", check)


@router.post("/sheriff-choice")
def submit_sheriff_choice(payload: SheriffChoiceSubmit):
    def check(store: GameStore, player, values):
        game = store.game
        expected = "FINAL" if game.get("phase") == "FINAL_DUEL" else "INITIAL"
        if values["stage"] != expected:
            raise PreconditionFailed("Étape de choix incorrecte", details={"expected": expected})
        legal = int(game["config"].get("legal_tokens", 20))
        if values["tokens_entering"] < legal:
            raise PreconditionFailed(f"Au moins {legal} jetons entrants", details={"legal_tokens": legal})
        if expected == "INITIAL" and not values.get("visa_choice"):
            raise PreconditionFailed("Choix du visa requis")
        if expected == "FINAL":
            final = store.first("duels", is_final=True)
            if not final or player["seat"] not in (final["seat1"], final["seat2"]):
                raise Forbidden("Réservé aux finalistes")
    return _submit(payload, "sheriff_choice", check)


@router.post("/duel-decision")
def submit_duel_decision(payload: DuelDecisionSubmit):
    def check(store: GameStore, player, values):
        duel = store.first("duels", id=values["duel_id"])
        if duel is None:
            raise NotFound("Duel introuvable", details={"duelId": values["duel_id"]})
        if player["seat"] not in (duel["seat1"], duel["seat2"]):
            raise Forbidden("Joueur absent de ce duel")
        if duel["status"] != "ACTIVE":
            raise PreconditionFailed("Le duel n'est pas actif", details={"status": duel["status"]})
    return _submit(payload, "duel_decision", check)


@router.post("/river")
def submit_river(payload: RiverSubmit):
    def check(store: GameStore, player, values):
        state = store.first("river_states", player_id=player["player_id"])
        if not state or state.get("status") != "EN_BATEAU":
            raise PreconditionFailed("Le joueur n'est plus sur le bateau")
        if values.get("keryndes") and not state.get("keryndes_available"):
            raise PreconditionFailed("Capacité Keryndes indisponible")
        if values["decision"] == "DESCENDS":
            values.update({"stake": 0, "keryndes": None})
        values["level"] = int((store.game.get("extra") or {}).get("level") or 1)
        return values
    return _submit(payload, "river", check)


@router.post("/infection")
def submit_infection(payload: InfectionSubmit):
    def check(store: GameStore, player, values):
        if not player.get("is_alive", True):
            raise Forbidden("Les joueurs morts ne jouent plus")
        target = values.get("target_seat")
        if target is not None:
            victim = store.player_by_seat(target)
            if victim is None:
                raise PreconditionFailed("Cible introuvable", details={"targetSeat": target})
            if values["action"] == "SHOT" and not victim.get("is_alive", True):
                raise PreconditionFailed("La cible est déjà morte", details={"targetSeat": target})
            if target == player["seat"] and values["action"] != "ANTIDOTE":
                raise PreconditionFailed("Impossible de se cibler soi-même")
        item = values.get("item_name")
        if item and Ledger(store).item_count(player, item) < 1:
            raise PreconditionFailed("Objet non possédé", details={"item": item})
    return _submit(payload, "infection", check)
