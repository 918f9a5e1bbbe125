"""
Commandes de phase (hôte ou admin) : lock, unlock (forcé), next_phase
(cible optionnelle), next_round. Applicables à tous les types de jeu.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from partyrounds.deps.auth import identity_required
from partyrounds.deps.steps import host_step
from partyrounds.models.submission import PhaseRequest

router = APIRouter(prefix="/phase", tags=["phase"])


@router.post("/manage")
def manage_phase(payload: PhaseRequest, who: Dict[str, Any] = Depends(identity_required)):
    return host_step(payload.game_id, who, "manage-phase", action=payload.action, target=payload.target)
