"""
Service: ledger.py
Registre des ressources joueurs (jetons, points de victoire, inventaire).

Seuls les orchestrateurs de résolution écrivent ici; les routes de soumission
se contentent de lire les soldes. Toute mutation qui rendrait un solde ou une
quantité négative lève `IntegrityViolation` : rien n'est corrigé en silence.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
import logging

from partyrounds.engine.errors import IntegrityViolation
from .game_store import GameStore

logger = logging.getLogger(__name__)


class Ledger:
    def __init__(self, store: GameStore):
        self.store = store

    # ---------- jetons ----------
    def balance(self, player: Dict[str, Any]) -> int:
        return int(player.get("tokens") or 0)

    def debit(self, player: Dict[str, Any], amount: int, reason: str) -> int:
        amount = int(amount)
        if amount < 0:
            raise IntegrityViolation(
                "Débit négatif refusé",
                details={"player_id": player["player_id"], "amount": amount, "reason": reason},
            )
        after = self.balance(player) - amount
        if after < 0:
            raise IntegrityViolation(
                "Solde négatif après débit",
                details={"player_id": player["player_id"], "amount": amount, "reason": reason},
            )
        player["tokens"] = after
        logger.debug("debit %s -%s (%s) -> %s", player["player_id"], amount, reason, after)
        return after

    def debit_floor(self, player: Dict[str, Any], amount: int, reason: str) -> int:
        """Pénalité plafonnée au solde disponible; renvoie le montant réellement retiré."""
        taken = min(self.balance(player), max(0, int(amount)))
        self.debit(player, taken, reason)
        return taken

    def credit(self, player: Dict[str, Any], amount: int, reason: str) -> int:
        amount = int(amount)
        if amount < 0:
            raise IntegrityViolation(
                "Crédit négatif refusé",
                details={"player_id": player["player_id"], "amount": amount, "reason": reason},
            )
        player["tokens"] = self.balance(player) + amount
        logger.debug("credit %s +%s (%s)", player["player_id"], amount, reason)
        return player["tokens"]

    def set_tokens(self, player: Dict[str, Any], value: int, reason: str) -> None:
        if int(value) < 0:
            raise IntegrityViolation(
                "Solde négatif refusé",
                details={"player_id": player["player_id"], "value": value, "reason": reason},
            )
        player["tokens"] = int(value)

    # ---------- points de victoire ----------
    def add_victory_points(self, player: Dict[str, Any], delta: int, reason: str) -> int:
        player["victory_points"] = int(player.get("victory_points") or 0) + int(delta)
        logger.debug("victory_points %s %+d (%s)", player["player_id"], delta, reason)
        return player["victory_points"]

    # ---------- inventaire ----------
    def _item_row(self, player: Dict[str, Any], item_name: str) -> Optional[Dict[str, Any]]:
        return self.store.first("inventory", player_id=player["player_id"], item_name=item_name)

    def item_count(self, player: Dict[str, Any], item_name: str) -> int:
        row = self._item_row(player, item_name)
        return int(row["quantity"]) if row else 0

    def grant_item(
        self,
        player: Dict[str, Any],
        item_name: str,
        quantity: int = 1,
        *,
        attack_usable: bool = False,
        permanent: bool = False,
    ) -> Dict[str, Any]:
        if quantity <= 0:
            raise IntegrityViolation("Quantité d'objet invalide", details={"item": item_name, "quantity": quantity})
        row = self._item_row(player, item_name)
        if row is None:
            row = self.store.insert(
                "inventory",
                {
                    "player_id": player["player_id"],
                    "seat": player["seat"],
                    "item_name": item_name,
                    "quantity": 0,
                    "attack_usable": attack_usable,
                    "available": True,
                    "permanent": permanent,
                },
            )
        row["quantity"] = int(row["quantity"]) + quantity
        row["available"] = True
        return row

    def consume_item(self, player: Dict[str, Any], item_name: str) -> bool:
        """Retire une unité; False si le joueur ne possède pas l'objet. Les objets permanents ne s'usent pas."""
        row = self._item_row(player, item_name)
        if row is None or int(row["quantity"]) <= 0:
            return False
        if row.get("permanent"):
            return True
        row["quantity"] = int(row["quantity"]) - 1
        if row["quantity"] == 0:
            self.store.delete_rows("inventory", id=row["id"])
        return True

    def inventory_of(self, player: Dict[str, Any]) -> Dict[str, int]:
        return {
            row["item_name"]: int(row["quantity"])
            for row in self.store.rows("inventory", player_id=player["player_id"])
            if int(row["quantity"]) > 0
        }
