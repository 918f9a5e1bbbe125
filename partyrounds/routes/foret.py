"""
Orchestrateurs de la Forêt (hôte ou admin).

Une manche : close-bets -> publish-positions -> resolve-combat ->
generate-shop -> resolve-shop. Chaque étape est rejouable sans effet :
combat, génération de boutique et achats renvoient `alreadyResolved`.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from partyrounds.deps.auth import identity_required
from partyrounds.deps.steps import host_step
from partyrounds.models.submission import GameRef, ShopResolveRequest, StepRequest

router = APIRouter(prefix="/foret", tags=["foret"])


@router.post("/close-bets")
def close_bets(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "close-bets")


@router.post("/publish-positions")
def publish_positions(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "publish-positions")


@router.post("/resolve-combat")
def resolve_combat(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "resolve-combat")


@router.post("/generate-shop")
def generate_shop(payload: StepRequest, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "generate-shop", seed=payload.seed)


@router.post("/resolve-shop")
def resolve_shop(payload: ShopResolveRequest, who: Dict[str, Any] = Depends(identity_required)):
    """`manche` optionnel : rejouer la boutique d'une manche passée renvoie ses achats."""
    return host_step(payload.game_id, who, "resolve-shop", round_number=payload.manche)
