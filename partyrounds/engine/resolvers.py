"""
Registre des résolveurs de manche (un `RoundResolver` par type de jeu) et
point d'entrée unique `run_step`.

`run_step` :
1) ouvre la transaction du store (verrou + snapshot);
2) exécute l'étape demandée (chaque étape vérifie elle-même phase, verrou
   et marqueur de résolution);
3) en cas d'`IntegrityViolation` : rollback, log `error`, trace dans le
   journal MJ (nouvelle transaction), puis l'erreur est propagée;
4) après commit : publication des nouvelles entrées de journal (WebSocket,
   webhook), sans attendre la livraison.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from partyrounds.services import audit, bots
from partyrounds.services.game_store import GameStore
from partyrounds.services.notifier import notify_safe
from partyrounds.services.ws_manager import ws_publish_safe
from . import foret, infection, phase_control, rivieres, sheriff
from .errors import IntegrityViolation, NotFound, PreconditionFailed

logger = logging.getLogger(__name__)

Step = Callable[..., Dict[str, Any]]


@dataclass(frozen=True)
class RoundResolver:
    game_type: str
    steps: Dict[str, Step] = field(default_factory=dict)

    def step(self, name: str) -> Step:
        try:
            return self.steps[name]
        except KeyError:
            raise PreconditionFailed(
                f"Étape {name} indisponible pour {self.game_type}",
                details={"available": sorted(self.steps)},
            )


def _resolve_final_duel(store: GameStore) -> Dict[str, Any]:
    duel = store.first("duels", is_final=True)
    if duel is None:
        raise NotFound("Duel final introuvable")
    return sheriff.resolve_duel(store, duel["id"])


def _synthesize_bots(store: GameStore, seed: Any = None) -> Dict[str, Any]:
    return {"decisions": bots.synthesize(store, bots.make_rng(seed))}


_COMMON: Dict[str, Step] = {
    "bots": _synthesize_bots,
    "manage-phase": phase_control.manage_phase,
}

RESOLVERS: Dict[str, RoundResolver] = {
    "FORET": RoundResolver("FORET", {
        **_COMMON,
        "close-bets": foret.close_bets,
        "publish-positions": foret.publish_positions,
        "resolve-combat": foret.resolve_combat,
        "generate-shop": foret.generate_shop,
        "resolve-shop": foret.resolve_shop,
    }),
    "SHERIFF": RoundResolver("SHERIFF", {
        **_COMMON,
        "lock-choices": sheriff.lock_choices,
        "next-duel": sheriff.next_duel,
        "resolve-duel": sheriff.resolve_duel,
        "create-final-duel": sheriff.create_final_duel,
        "lock-final-choices": sheriff.lock_final_choices,
        "resolve-final-duel": _resolve_final_duel,
    }),
    "RIVIERES": RoundResolver("RIVIERES", {
        **_COMMON,
        "set-danger": rivieres.set_danger,
        "lock-decisions": rivieres.lock_decisions,
        "resolve-level": rivieres.resolve_level,
    }),
    "INFECTION": RoundResolver("INFECTION", {
        **_COMMON,
        "resolve-round": infection.resolve_round,
        "next-round": infection.next_round,
    }),
}


def resolver_for(store: GameStore) -> RoundResolver:
    game_type = store.game.get("game_type")
    resolver = RESOLVERS.get(game_type or "")
    if resolver is None:
        raise PreconditionFailed("Type de jeu sans résolveur", details={"game_type": game_type})
    return resolver


def publish_new(store: GameStore, public_len: int, mj_len: int) -> List[Dict[str, Any]]:
    records = store.public_log[public_len:] + store.mj_log[mj_len:]
    ws_publish_safe(store.game_id, records)
    notify_safe(store.game_id, records)
    return records


def run_step(store: GameStore, name: str, **kwargs: Any) -> Dict[str, Any]:
    step = resolver_for(store).step(name)
    public_len, mj_len = len(store.public_log), len(store.mj_log)
    try:
        with store.transaction():
            result = step(store, **kwargs)
    except IntegrityViolation as exc:
        logger.error(
            "integrity violation in %s for game %s: %s",
            name, store.game_id, exc.message,
            extra={"error_id": exc.error_id},
        )
        with store.transaction():
            audit.mj_only(store, "INTEGRITY_VIOLATION", exc.message,
                          {"step": name, "errorId": exc.error_id, "details": exc.details})
        publish_new(store, public_len, mj_len)
        raise
    publish_new(store, public_len, mj_len)
    logger.info("game %s step %s done", store.game_id, name)
    return result
