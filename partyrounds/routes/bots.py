"""
Décisions des bots pour la phase courante (hôte ou admin).

Un bot qui a déjà soumis pour la phase n'est pas rejoué ; la graine
optionnelle rend le tirage reproductible.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from partyrounds.deps.auth import identity_required
from partyrounds.deps.steps import host_step
from partyrounds.models.submission import StepRequest

router = APIRouter(prefix="/bots", tags=["bots"])


@router.post("/decisions")
def bot_decisions(payload: StepRequest, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "bots", seed=payload.seed)
