"""
Service: submissions.py
Intentions des joueurs par (partie, manche, joueur, catégorie).

- Avant verrouillage : plusieurs envois possibles, le plus récent l'emporte.
- Au verrouillage (par l'orchestrateur) : la soumission retenue est figée
  (`LOCKED`) avec sa valeur effective; les précédentes sont `SUPERSEDED`.
- Ce module lit les soldes mais n'écrit jamais dans le registre.

Humains et bots passent par la même fonction `record` (champ `source`).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import time

from partyrounds.engine.errors import Forbidden, PreconditionFailed
from . import phase_machine
from .game_store import GameStore

PENDING = "PENDING"
LOCKED = "LOCKED"
SUPERSEDED = "SUPERSEDED"

SOURCE_HUMAN = "HUMAN"
SOURCE_BOT = "BOT"
SOURCE_AUTO = "AUTO"


@dataclass(frozen=True)
class Category:
    table: str
    game_type: str
    phases: Tuple[str, ...]
    keys: Tuple[str, ...] = ()


CATEGORIES: Dict[str, Category] = {
    "bet": Category("bets", "FORET", ("PHASE1_MISES",)),
    "action": Category("actions", "FORET", ("PHASE2_POSITIONS",)),
    "shop": Category("shop_requests", "FORET", ("PHASE3_SHOP",)),
    "sheriff_choice": Category("sheriff_choices", "SHERIFF", ("CHOICES", "FINAL_DUEL"), ("stage",)),
    "duel_decision": Category("duel_decisions", "SHERIFF", ("DUELS", "FINAL_DUEL"), ("duel_id",)),
    "river": Category("river_decisions", "RIVIERES", ("DECISIONS",), ("level",)),
    "infection": Category("infection_inputs", "INFECTION", ("ACTIONS",), ("action",)),
}


def category(name: str) -> Category:
    try:
        return CATEGORIES[name]
    except KeyError:
        raise PreconditionFailed(f"Catégorie de soumission inconnue: {name}")


def ensure_open(store: GameStore, name: str) -> Category:
    cat = category(name)
    game = store.game
    phase_machine.ensure_in_game(game)
    if game.get("game_type") != cat.game_type:
        raise PreconditionFailed(f"Soumission réservée aux parties {cat.game_type}")
    if game.get("phase") not in cat.phases:
        raise PreconditionFailed(
            "Soumissions fermées pour cette phase",
            details={"phase": game.get("phase"), "expected": list(cat.phases)},
        )
    if game.get("phase_locked"):
        raise PreconditionFailed("La phase est verrouillée", details={"phase": game.get("phase")})
    return cat


def record(
    store: GameStore,
    name: str,
    player: Dict[str, Any],
    payload: Dict[str, Any],
    *,
    source: str = SOURCE_HUMAN,
) -> Dict[str, Any]:
    """Enregistre une intention (phase ouverte obligatoire)."""
    cat = ensure_open(store, name)
    if player.get("status") != "ACTIVE":
        raise Forbidden("Joueur retiré de la partie")
    missing = [k for k in cat.keys if payload.get(k) is None]
    if missing:
        raise PreconditionFailed("Champs de soumission manquants", details={"missing": missing})
    row = {
        **payload,
        "round": store.game["round"],
        "player_id": player["player_id"],
        "seat": player["seat"],
        "display_name": player["display_name"],
        "source": source,
        "status": PENDING,
        "submitted_at": time.time(),
        "seq": len(store.tables[cat.table]) + 1,
    }
    return store.insert(cat.table, row)


def latest(store: GameStore, name: str, round_number: Optional[int] = None, **key: Any) -> Dict[str, Dict[str, Any]]:
    """Soumission retenue par joueur (la plus récente, ou celle déjà figée)."""
    cat = category(name)
    rnd = store.game["round"] if round_number is None else round_number
    chosen: Dict[str, Dict[str, Any]] = {}
    for row in store.rows(cat.table, round=rnd, **key):
        if row.get("status") == SUPERSEDED:
            continue
        current = chosen.get(row["player_id"])
        if current is not None and current.get("status") == LOCKED:
            continue
        if row.get("status") == LOCKED:
            chosen[row["player_id"]] = row
            continue
        if current is None or (row["submitted_at"], row["seq"]) >= (current["submitted_at"], current["seq"]):
            chosen[row["player_id"]] = row
    return chosen


def has_submission(store: GameStore, name: str, player_id: str, **key: Any) -> bool:
    cat = category(name)
    return any(
        row.get("status") != SUPERSEDED
        for row in store.rows(cat.table, round=store.game["round"], player_id=player_id, **key)
    )


def freeze(
    store: GameStore,
    name: str,
    effective: Dict[str, Dict[str, Any]],
    **key: Any,
) -> Dict[str, Dict[str, Any]]:
    """
    Fige la soumission retenue de chaque joueur avec ses valeurs effectives
    (`effective[player_id]` est fusionné dans la ligne). Les joueurs sans
    soumission reçoivent une ligne LOCKED synthétique.
    """
    cat = category(name)
    rnd = store.game["round"]
    kept = latest(store, name, **key)
    for row in store.rows(cat.table, round=rnd, **key):
        if row.get("status") == PENDING and kept.get(row["player_id"]) is not row:
            row["status"] = SUPERSEDED
    for player_id, values in effective.items():
        row = kept.get(player_id)
        if row is None:
            player = store.get_player(player_id) or {}
            row = store.insert(cat.table, {
                **key,
                "round": rnd,
                "player_id": player_id,
                "seat": player.get("seat"),
                "display_name": player.get("display_name"),
                "source": SOURCE_AUTO,
                "submitted_at": time.time(),
                "seq": len(store.tables[cat.table]) + 1,
            })
            kept[player_id] = row
        row.update(values)
        row["status"] = LOCKED
    return kept
