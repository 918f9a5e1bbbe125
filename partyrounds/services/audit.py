"""
Service: audit.py
Émission des deux récits d'un événement de résolution :
- public (audience ALL) : jamais d'information cachée (cibles, objets refusés…);
- privilégié (audience MJ) : détail complet.

Les entrées sont ajoutées aux journaux du store pendant la transaction de
l'orchestrateur : une résolution annulée n'y laisse aucune trace.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

from partyrounds.models.event import AuditRecord
from .game_store import GameStore


def _record(store: GameStore, audience: str, kind: str, message: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    record = AuditRecord(
        id=uuid4().hex,
        game_id=store.game_id,
        round=store.game.get("round"),
        audience=audience,
        kind=kind,
        message=message,
        payload=payload or {},
    )
    return store.append_log(record.model_dump())


def emit(
    store: GameStore,
    kind: str,
    *,
    public: Optional[str] = None,
    mj: Optional[str] = None,
    public_payload: Optional[Dict[str, Any]] = None,
    mj_payload: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Ajoute le récit public et/ou MJ d'un événement. Renvoie les entrées créées."""
    records: List[Dict[str, Any]] = []
    if public:
        records.append(_record(store, "ALL", kind, public, public_payload))
    if mj:
        records.append(_record(store, "MJ", kind, mj, mj_payload))
    return records


def mj_only(store: GameStore, kind: str, message: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return _record(store, "MJ", kind, message, payload)
