"""
Routes d'identité
=================

- POST   /auth/tokens         : (admin) émet un jeton Bearer pour un utilisateur.
- DELETE /auth/tokens/{token} : (admin) révoque un jeton.
- GET    /auth/me             : identité associée au Bearer courant.

Les jetons émis servent à créer et piloter des parties (hôte) ; les joueurs
s'authentifient ensuite par leur `playerToken` propre à chaque partie.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from partyrounds.deps.auth import admin_required, identity_required
from partyrounds.engine.errors import NotFound
from partyrounds.services import identity

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(..., alias="displayName", min_length=1, max_length=40)
    roles: List[str] = Field(default_factory=list)
    user_id: Optional[str] = Field(None, alias="userId")


@router.post("/tokens")
def issue_token(payload: TokenRequest, _: Dict[str, Any] = Depends(admin_required)):
    issued = identity.issue(payload.display_name, payload.roles, payload.user_id)
    return {"success": True, **issued}


@router.delete("/tokens/{token}")
def revoke_token(token: str, _: Dict[str, Any] = Depends(admin_required)):
    if not identity.revoke(token):
        raise NotFound("Jeton inconnu")
    return {"success": True}


@router.get("/me")
def me(who: Dict[str, Any] = Depends(identity_required)):
    return {"success": True, "identity": who}
