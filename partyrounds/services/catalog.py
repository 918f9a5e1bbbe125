"""
Service: catalog.py
Rôle:
- Charger le référentiel Forêt (objets + monstres).
- Exposer `CATALOG.item(name)`, `CATALOG.items()`, `CATALOG.monsters()`.

Fichier source (optionnel):
- <DATA_DIR>/foret_catalog.json → {"items":[...], "monsters":[...]}
  Sans fichier, le référentiel par défaut ci-dessous est utilisé.

Exemple d'objet:
{
  "name": "Totem de Rupture",
  "category": "ATTAQUE",          # "ATTAQUE" | "PROTECTION"
  "base_damage": 3,
  "cost_normal": 20,
  "cost_discount": 15,            # prix du clan remisé (config `discount_team`)
  "restockable": true,
  "ignore_protection": true,
  "special_effect": null          # BOUCLIER_MIROIR | VOILE_PENALITE | GAZ_ANNULATION | BERSERKER
}
"""
from pathlib import Path
from typing import Any, Dict, List, Optional

from partyrounds.config.settings import settings
from .io_utils import read_json

CATALOG_PATH = Path(settings.DATA_DIR) / "foret_catalog.json"

DEFAULT_WEAPON = "Par défaut (+2 si compagnon Akandé)"
FIXED_SHOP_ITEMS = ("Totem de Rupture", "Flèche du Crépuscule")
NO_ITEM = "Aucune"

DEFAULT_ITEMS: List[Dict[str, Any]] = [
    {"name": DEFAULT_WEAPON, "category": "ATTAQUE", "base_damage": 2, "cost_normal": 0,
     "cost_discount": 0, "restockable": False, "purchasable": False, "permanent": True},
    {"name": "Totem de Rupture", "category": "ATTAQUE", "base_damage": 3, "cost_normal": 20,
     "cost_discount": 15, "restockable": True, "ignore_protection": True},
    {"name": "Flèche du Crépuscule", "category": "ATTAQUE", "base_damage": 3, "cost_normal": 15,
     "cost_discount": 12, "restockable": True},
    {"name": "Piqure Berseker", "category": "ATTAQUE", "base_damage": 10, "cost_normal": 15,
     "cost_discount": 10, "restockable": False, "special_effect": "BERSERKER"},
    {"name": "Hache Runique", "category": "ATTAQUE", "base_damage": 5, "cost_normal": 20,
     "cost_discount": 15, "restockable": False},
    {"name": "Lance des Marais", "category": "ATTAQUE", "base_damage": 4, "cost_normal": 18,
     "cost_discount": 14, "restockable": True},
    {"name": "Bouclier Miroir", "category": "PROTECTION", "cost_normal": 15, "cost_discount": 10,
     "restockable": True, "special_effect": "BOUCLIER_MIROIR"},
    {"name": "Voile de Brume", "category": "PROTECTION", "cost_normal": 12, "cost_discount": 10,
     "restockable": True, "special_effect": "VOILE_PENALITE"},
    {"name": "Gaz Asphyxiant", "category": "PROTECTION", "cost_normal": 12, "cost_discount": 10,
     "restockable": False, "special_effect": "GAZ_ANNULATION"},
]

DEFAULT_MONSTERS: List[Dict[str, Any]] = [
    {"monster_id": 1, "name": "Loup des Brumes", "pv_max": 8, "reward": 10},
    {"monster_id": 2, "name": "Sanglier Noir", "pv_max": 10, "reward": 10},
    {"monster_id": 3, "name": "Serpent Géant", "pv_max": 12, "reward": 12},
    {"monster_id": 4, "name": "Ours des Cendres", "pv_max": 14, "reward": 15},
    {"monster_id": 5, "name": "Gardien Sylvestre", "pv_max": 20, "reward": 20},
]


class ForetCatalog:
    """Référentiel statique des objets et monstres de la Forêt."""

    def __init__(self):
        self.catalog_items: Dict[str, Dict[str, Any]] = {}
        self.catalog_monsters: List[Dict[str, Any]] = []
        self.load()

    def load(self) -> None:
        raw = read_json(CATALOG_PATH) or {}
        items = raw.get("items") or DEFAULT_ITEMS
        self.catalog_items = {item["name"]: item for item in items}
        self.catalog_monsters = sorted(raw.get("monsters") or DEFAULT_MONSTERS, key=lambda m: m["monster_id"])

    def item(self, name: Optional[str]) -> Optional[Dict[str, Any]]:
        if not name:
            return None
        return self.catalog_items.get(name)

    def items(self) -> List[Dict[str, Any]]:
        return list(self.catalog_items.values())

    def monsters(self) -> List[Dict[str, Any]]:
        return list(self.catalog_monsters)

    def price(self, name: str, team: Optional[str], discount_team: str) -> Optional[int]:
        """Prix applicable au joueur (remise pour le clan `discount_team`)."""
        item = self.item(name)
        if not item:
            return None
        if team and discount_team and discount_team.lower() in team.lower():
            return item.get("cost_discount") or item.get("cost_normal")
        return item.get("cost_normal")


CATALOG = ForetCatalog()
