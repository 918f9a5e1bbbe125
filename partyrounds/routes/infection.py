"""
Orchestrateurs d'Infection (hôte ou admin).

Par manche : resolve-round -> next-round.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from partyrounds.deps.auth import identity_required
from partyrounds.deps.steps import host_step
from partyrounds.models.submission import GameRef, StepRequest

router = APIRouter(prefix="/infection", tags=["infection"])


@router.post("/resolve-round")
def resolve_round(payload: StepRequest, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "resolve-round", seed=payload.seed)


@router.post("/next-round")
def next_round(payload: GameRef, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "next-round")
