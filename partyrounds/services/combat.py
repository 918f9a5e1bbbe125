"""
Service: combat.py
Résolution d'un tour de combat Forêt, dans l'ordre des positions finales.

- Une protection posée sur un emplacement ne touche que les attaquants
  placés APRÈS son poseur.
- Bouclier Miroir bloque les dégâts; Voile de Brume et Gaz Asphyxiant
  annulent l'attaque. Un objet `ignore_protection` passe outre.
- Dégâts = dégâts de base des armes (+2 avec l'arme par défaut pour le clan bonus).
- Un monstre à 0 PV meurt et rapporte sa récompense au tueur.
- Piqure Berseker sans victime : pénalité de jetons (appliquée par l'orchestrateur).

Les dictionnaires de monstres passés en entrée sont mis à jour sur place
(PV, statut); le reste du résultat est renvoyé dans `CombatOutcome`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .catalog import CATALOG, DEFAULT_WEAPON, NO_ITEM, ForetCatalog

BERSERKER_PENALTY = 10

_CANCEL_LABELS = {
    "GAZ_ANNULATION": "Gaz Asphyxiant",
    "VOILE_PENALITE": "Voile de Brume",
}


@dataclass
class CombatOutcome:
    public_actions: List[Dict[str, Any]] = field(default_factory=list)
    mj_actions: List[Dict[str, Any]] = field(default_factory=list)
    kills: List[Dict[str, Any]] = field(default_factory=list)
    consumed: List[Dict[str, Any]] = field(default_factory=list)
    berserker_penalties: List[str] = field(default_factory=list)


def _is_item(name: Optional[str]) -> bool:
    return bool(name) and name != NO_ITEM


def _protection_effect(item: Dict[str, Any]) -> Optional[str]:
    effect = item.get("special_effect")
    if effect in ("BOUCLIER_MIROIR", "VOILE_PENALITE", "GAZ_ANNULATION"):
        return effect
    lowered = item["name"].lower()
    if "bouclier" in lowered:
        return "BOUCLIER_MIROIR"
    if "voile" in lowered:
        return "VOILE_PENALITE"
    if "gaz" in lowered:
        return "GAZ_ANNULATION"
    return None


def resolve_combat_round(
    positions: List[Dict[str, Any]],
    monsters_by_slot: Dict[int, Dict[str, Any]],
    has_item: Callable[[str, str], bool],
    *,
    bonus_team: str = "Akandé",
    catalog: ForetCatalog = CATALOG,
) -> CombatOutcome:
    outcome = CombatOutcome()
    # slot → {effect: position of activation}
    protections: Dict[int, Dict[str, int]] = {}
    berserkers: List[str] = []

    def track(pos: Dict[str, Any], item_name: str) -> None:
        if item_name == DEFAULT_WEAPON:
            return
        outcome.consumed.append({
            "player_id": pos["player_id"],
            "display_name": pos["display_name"],
            "item_name": item_name,
            "was_in_inventory": has_item(pos["player_id"], item_name),
        })

    for pos in sorted(positions, key=lambda p: p["position"]):
        position = pos["position"]
        target = pos.get("attack_slot")
        mj = {
            "position": position,
            "display_name": pos["display_name"],
            "seat": pos["seat"],
            "attack_slot": target,
            "attack1": pos.get("attack1"),
            "attack2": pos.get("attack2"),
            "protection": pos.get("protection"),
            "protection_slot": pos.get("protection_slot"),
            "damage": 0,
            "target_monster": None,
            "cancelled": False,
            "cancel_reason": None,
            "killed": None,
        }
        public = {
            "position": position,
            "display_name": pos["display_name"],
            "weapons": [],
            "damage": 0,
            "cancelled": False,
        }

        # 1) la protection s'active pour les attaquants suivants
        protection = pos.get("protection")
        if _is_item(protection) and pos.get("protection_slot") and protection != DEFAULT_WEAPON:
            item = catalog.item(protection)
            effect = _protection_effect(item) if item else None
            if effect:
                protections.setdefault(pos["protection_slot"], {})[effect] = position
                track(pos, protection)

        active = protections.get(target, {}) if target else {}

        def applies(effect: str) -> bool:
            return effect in active and active[effect] < position

        cancel_reason = None
        for effect in ("GAZ_ANNULATION", "VOILE_PENALITE"):
            if applies(effect):
                cancel_reason = _CANCEL_LABELS[effect]

        # 2) armes
        damage = 0
        ignores_protection = False
        for key in ("attack1", "attack2"):
            weapon_name = pos.get(key)
            if not _is_item(weapon_name):
                continue
            weapon = catalog.item(weapon_name)
            if not weapon:
                continue
            public["weapons"].append(weapon_name)
            bonus = 2 if weapon_name == DEFAULT_WEAPON and pos.get("team") == bonus_team else 0
            damage += int(weapon.get("base_damage") or 0) + bonus
            if weapon.get("ignore_protection"):
                ignores_protection = True
            if weapon.get("special_effect") == "BERSERKER":
                berserkers.append(pos["player_id"])
            track(pos, weapon_name)

        if ignores_protection:
            cancel_reason = None
        elif cancel_reason is None and applies("BOUCLIER_MIROIR") and damage > 0:
            cancel_reason = "Bouclier Miroir"

        if cancel_reason:
            mj["cancelled"] = public["cancelled"] = True
            mj["cancel_reason"] = cancel_reason
            public["cancel_reason"] = "Attaque bloquée" if cancel_reason == "Bouclier Miroir" else cancel_reason
            damage = 0

        mj["damage"] = public["damage"] = damage

        # 3) dégâts sur le monstre de l'emplacement visé
        monster = monsters_by_slot.get(target) if target else None
        if monster and monster.get("status") == "EN_BATAILLE":
            mj["target_monster"] = monster["name"]
            if damage > 0:
                monster["pv_current"] = max(0, int(monster["pv_current"]) - damage)
                if monster["pv_current"] <= 0:
                    monster["status"] = "MORT"
                    mj["killed"] = monster["name"]
                    outcome.kills.append({
                        "player_id": pos["player_id"],
                        "display_name": pos["display_name"],
                        "seat": pos["seat"],
                        "monster_id": monster["monster_id"],
                        "monster_name": monster["name"],
                        "slot": target,
                        "reward": int(monster.get("reward") or 10),
                    })

        outcome.public_actions.append(public)
        outcome.mj_actions.append(mj)

    killers = {kill["player_id"] for kill in outcome.kills}
    outcome.berserker_penalties = [pid for pid in dict.fromkeys(berserkers) if pid not in killers]
    return outcome
