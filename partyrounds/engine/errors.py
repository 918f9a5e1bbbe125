"""
Erreurs du moteur de résolution.

Chaque erreur porte un code HTTP et un identifiant de corrélation court
(`error_id`, 8 caractères hex) repris dans la réponse et dans les logs.

- PreconditionFailed : mauvaise phase, phase verrouillée, déjà résolu…
- NotFound / Forbidden / Conflict : erreurs d'accès classiques.
- IntegrityViolation : défaut interne (permutation invalide, solde négatif…).
  La résolution est annulée et l'erreur est tracée dans le journal MJ.

Les refus de pénurie (stock épuisé, jetons insuffisants) ne sont PAS des
erreurs : ils figurent dans les résultats.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import uuid4


def new_error_id() -> str:
    return uuid4().hex[:8]


class ResolutionError(Exception):
    status_code = 400

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.error_id = new_error_id()


class PreconditionFailed(ResolutionError):
    status_code = 400


class Forbidden(ResolutionError):
    status_code = 403


class NotFound(ResolutionError):
    status_code = 404


class Conflict(ResolutionError):
    status_code = 409


class IntegrityViolation(ResolutionError):
    status_code = 500
