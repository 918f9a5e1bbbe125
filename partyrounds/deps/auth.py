"""
Dépendances d'authentification
==============================

- `identity_required` : Bearer obligatoire, résolu par le fournisseur
  d'identité (`services.identity`) en {user_id, display_name, roles}.
- `identity_optional` : même chose, mais None si aucun Bearer.
- `admin_required` : identité portant le rôle `admin`.
- `host_store(game_id, identity)` : store de la partie si l'identité en est
  l'hôte (ou admin), sinon 403.
- `player_from_token(store, token)` : joueur authentifié par son `playerToken`.

Codes retour
------------
- 401 si aucun Bearer n'est fourni,
- 403 si le Bearer est inconnu ou si l'identité n'a pas les droits.

`HTTPBearer(auto_error=False)` laisse passer les préflights OPTIONS et
permet de renvoyer nos propres 401/403.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from partyrounds.engine.errors import Forbidden
from partyrounds.services import identity
from partyrounds.services.game_store import GameStore
from partyrounds.services.store_registry import get_store

bearer = HTTPBearer(auto_error=False)


def identity_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[Dict[str, Any]]:
    if not credentials or (credentials.scheme or "").lower() != "bearer":
        return None
    resolved = identity.resolve(credentials.credentials)
    if resolved is None:
        raise HTTPException(status_code=403, detail="Invalid token")
    return resolved


def identity_required(
    resolved: Optional[Dict[str, Any]] = Depends(identity_optional),
) -> Dict[str, Any]:
    if resolved is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return resolved


def admin_required(resolved: Dict[str, Any] = Depends(identity_required)) -> Dict[str, Any]:
    if not identity.is_admin(resolved):
        raise HTTPException(status_code=403, detail="Admin role required")
    return resolved


def is_host(store: GameStore, resolved: Dict[str, Any]) -> bool:
    return identity.is_admin(resolved) or store.game.get("host_user_id") == resolved.get("user_id")


def host_store(game_id: str, resolved: Dict[str, Any]) -> GameStore:
    store = get_store(game_id)
    if not is_host(store, resolved):
        raise Forbidden("Réservé à l'hôte de la partie", details={"gameId": game_id})
    return store


def player_from_token(store: GameStore, token: str) -> Dict[str, Any]:
    player = store.player_by_token(token)
    if player is None:
        raise Forbidden("Jeton joueur invalide")
    return player
