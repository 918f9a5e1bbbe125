"""
Exécution d'une étape d'orchestrateur pour le compte de l'hôte.

Toutes les routes MJ passent par `host_step` : contrôle hôte/admin, puis
`run_step` (transaction, idempotence, publication des journaux).
"""
from __future__ import annotations

from typing import Any, Dict

from partyrounds.engine.resolvers import run_step
from .auth import host_store


def host_step(game_id: str, who: Dict[str, Any], name: str, **kwargs: Any) -> Dict[str, Any]:
    store = host_store(game_id, who)
    result = run_step(store, name, **kwargs)
    return {"success": True, "step": name, "result": result}
