"""
Service: identity.py
Fournisseur d'identité minimal : jeton Bearer -> {user_id, display_name, roles}.

- `settings.ADMIN_TOKEN` : identité "admin" (rôle `admin`, tous droits MJ).
- Jetons émis par un admin, persistés dans `<DATA_DIR>/identities.json` :
  {"<token>": {"user_id": "...", "display_name": "...", "roles": [...]}}
"""
from __future__ import annotations

from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional
from uuid import uuid4
import secrets

from partyrounds.config.settings import settings
from .io_utils import read_json, write_json

IDENTITIES_PATH = Path(settings.DATA_DIR) / "identities.json"
ADMIN_ROLE = "admin"

_LOCK = RLock()


def _load() -> Dict[str, Dict[str, Any]]:
    return read_json(IDENTITIES_PATH) or {}


def resolve(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Identité associée au jeton, ou None."""
    if not token:
        return None
    if secrets.compare_digest(token, settings.ADMIN_TOKEN):
        return {"user_id": "admin", "display_name": "Admin", "roles": [ADMIN_ROLE]}
    with _LOCK:
        record = _load().get(token)
    if not record:
        return None
    return {"user_id": record["user_id"], "display_name": record.get("display_name"),
            "roles": list(record.get("roles") or [])}


def issue(display_name: str, roles: Optional[List[str]] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
    token = secrets.token_urlsafe(24)
    record = {
        "user_id": user_id or uuid4().hex,
        "display_name": display_name,
        "roles": list(roles or []),
    }
    with _LOCK:
        identities = _load()
        identities[token] = record
        write_json(IDENTITIES_PATH, identities)
    return {"token": token, **record}


def revoke(token: str) -> bool:
    with _LOCK:
        identities = _load()
        if token not in identities:
            return False
        identities.pop(token)
        write_json(IDENTITIES_PATH, identities)
    return True


def is_admin(identity: Dict[str, Any]) -> bool:
    return ADMIN_ROLE in (identity.get("roles") or [])
