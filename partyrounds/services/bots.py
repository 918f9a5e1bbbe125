"""
Service: bots.py
Synthèse des décisions des joueurs bots (et des valeurs par défaut des
humains absents en mode auto).

Principes :
- une décision n'est synthétisée que si le joueur n'a encore rien soumis
  pour la manche (jamais de double soumission);
- la décision passe par `submissions.record`, comme celle d'un humain;
- les probabilités viennent d'une configuration par type de jeu, surchargeable
  par partie (`game["bot_config"]`);
- le hasard vient d'un `random.Random` éventuellement graine (tests, rejeu).
"""
from __future__ import annotations

import logging
import math
import random
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel

from . import submissions
from .catalog import CATALOG, DEFAULT_WEAPON, NO_ITEM
from .game_store import GameStore
from .ledger import Ledger

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configurations
# ---------------------------------------------------------------------------

class ForetBotConfig(BaseModel):
    bet_min_ratio: float = 0.0
    bet_max_ratio: float = 0.4
    protection_chance: int = 30
    buy_chance: int = 60
    default_bet: int = 5
    positions_max: int = 7


class SheriffBotConfig(BaseModel):
    visa_pv_chance: int = 60
    illegal_tokens_chance: int = 30
    illegal_tokens: int = 30
    search_chance: int = 35
    search_if_suspicious: int = 60


class RivieresBotConfig(BaseModel):
    stake_min_ratio: float = 0.10
    stake_max_ratio: float = 0.40
    high_danger: float = 10.5
    low_danger: float = 4.9
    high_danger_malus: float = 0.15
    low_danger_bonus: float = 0.10
    av1_chance: float = 0.60
    av1_danger: int = 50
    av2_chance: float = 0.40
    ability_team: str = "Keryndes"


class InfectionBotConfig(BaseModel):
    ba_shoot_chance: int = 90
    ae_sabotage_base: int = 40
    ae_sabotage_after_success: int = 90
    pv_antidote_chance: int = 80
    pv_shoot_chance: int = 70
    corruption_min: int = 2
    corruption_max: int = 10
    oc_pv_target_base: int = 40
    oc_pv_target_increment: int = 10


BOT_CONFIGS: Dict[str, Type[BaseModel]] = {
    "FORET": ForetBotConfig,
    "SHERIFF": SheriffBotConfig,
    "RIVIERES": RivieresBotConfig,
    "INFECTION": InfectionBotConfig,
}

C = TypeVar("C", bound=BaseModel)


def config_for(store: GameStore, model: Type[C]) -> C:
    """Configuration effective = défauts + surcharges de la partie."""
    overrides = (store.game.get("bot_config") or {})
    return model(**{k: v for k, v in overrides.items() if k in model.model_fields})


def make_rng(seed: Optional[Any] = None) -> random.Random:
    return random.Random(seed)


def _chance(rng: random.Random, percent: float) -> bool:
    return rng.random() * 100 < percent


def _pending_bots(store: GameStore, category: str, **key: Any) -> List[Dict[str, Any]]:
    return [
        p for p in store.active_players()
        if p.get("is_bot") and not submissions.has_submission(store, category, p["player_id"], **key)
    ]


def _result(player: Dict[str, Any], action: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    return {"player_id": player["player_id"], "seat": player["seat"], "display_name": player["display_name"],
            "action": action, **extra}


# ---------------------------------------------------------------------------
# Forêt
# ---------------------------------------------------------------------------

def foret_bet(player: Dict[str, Any], cfg: ForetBotConfig, rng: random.Random) -> int:
    tokens = int(player.get("tokens") or 0)
    ratio = cfg.bet_min_ratio + rng.random() * (cfg.bet_max_ratio - cfg.bet_min_ratio)
    return max(0, min(tokens, int(tokens * ratio)))


def foret_default_bet(player: Dict[str, Any], cfg: ForetBotConfig) -> int:
    return cfg.default_bet if int(player.get("tokens") or 0) >= cfg.default_bet else 0


def _alive_slots(store: GameStore) -> List[int]:
    return sorted(m["battlefield_slot"] for m in store.rows("monsters", status="EN_BATAILLE") if m.get("battlefield_slot"))


def foret_action(
    store: GameStore,
    player: Dict[str, Any],
    cfg: ForetBotConfig,
    rng: random.Random,
    *,
    smart: bool = True,
) -> Dict[str, Any]:
    """Action de combat : position souhaitée, cible, arme (possédée) et protection éventuelle."""
    slots = _alive_slots(store) or list(range(1, int(store.game["config"].get("battlefield_slots", 3)) + 1))
    players_count = max(1, len(store.active_players()))
    action: Dict[str, Any] = {
        "desired_position": rng.randint(1, max(players_count, cfg.positions_max) if not smart else players_count),
        "attack_slot": rng.choice(slots),
        "attack1": DEFAULT_WEAPON,
        "attack2": NO_ITEM,
        "protection": NO_ITEM,
        "protection_slot": None,
    }
    if not smart:
        return action
    owned = Ledger(store).inventory_of(player)
    weapons = sorted(
        (CATALOG.item(name) for name in owned if CATALOG.item(name) and CATALOG.item(name)["category"] == "ATTAQUE"
         and name != DEFAULT_WEAPON),
        key=lambda item: int(item.get("base_damage") or 0),
        reverse=True,
    )
    if weapons:
        action["attack2"] = weapons[0]["name"]
    shields = [name for name in owned if (CATALOG.item(name) or {}).get("category") == "PROTECTION"]
    if shields and _chance(rng, cfg.protection_chance):
        action["protection"] = rng.choice(shields)
        action["protection_slot"] = rng.choice(slots)
    return action


def foret_shop(
    store: GameStore,
    player: Dict[str, Any],
    cfg: ForetBotConfig,
    rng: random.Random,
) -> Dict[str, Any]:
    offer = store.first("shop_offers", round=store.game["round"])
    if not offer or not _chance(rng, cfg.buy_chance):
        return {"want_buy": False, "item_name": None}
    discount_team = store.game["config"].get("discount_team", "")
    affordable = [
        name for name in dict.fromkeys(offer["items"])
        if (CATALOG.price(name, player.get("team"), discount_team) or 0) <= int(player.get("tokens") or 0)
    ]
    if not affordable:
        return {"want_buy": False, "item_name": None}
    return {"want_buy": True, "item_name": rng.choice(affordable)}


FORET_PHASE_CATEGORY = {
    "PHASE1_MISES": "bet",
    "PHASE2_POSITIONS": "action",
    "PHASE3_SHOP": "shop",
}


def synthesize_foret(
    store: GameStore,
    rng: random.Random,
    *,
    include_humans: bool = False,
) -> List[Dict[str, Any]]:
    """
    Complète les soumissions de la phase Forêt courante.
    Bots : heuristique; humains (mode auto seulement) : valeurs par défaut.
    """
    category = FORET_PHASE_CATEGORY.get(store.game.get("phase"))
    if category is None:
        return []
    cfg = config_for(store, ForetBotConfig)
    results = []
    for player in store.active_players():
        if not player.get("is_bot") and not include_humans:
            continue
        if submissions.has_submission(store, category, player["player_id"]):
            continue
        bot = bool(player.get("is_bot"))
        if category == "bet":
            payload = {"amount": foret_bet(player, cfg, rng) if bot else foret_default_bet(player, cfg)}
        elif category == "action":
            payload = foret_action(store, player, cfg, rng, smart=bot)
        else:
            payload = foret_shop(store, player, cfg, rng) if bot else {"want_buy": False, "item_name": None}
        source = submissions.SOURCE_BOT if bot else submissions.SOURCE_AUTO
        submissions.record(store, category, player, payload, source=source)
        results.append(_result(player, category, **payload))
    return results


# ---------------------------------------------------------------------------
# Sheriff
# ---------------------------------------------------------------------------

def synthesize_sheriff_choices(store: GameStore, rng: random.Random) -> List[Dict[str, Any]]:
    cfg = config_for(store, SheriffBotConfig)
    config = store.game["config"]
    extra = store.game.setdefault("extra", {})
    legal = int(config.get("legal_tokens", 20))
    pool_left = int(config.get("common_pool", 0)) - int(extra.get("common_pool_pending", 0))
    results = []
    for bot in _pending_bots(store, "sheriff_choice", stage="INITIAL"):
        visa = "VICTORY_POINTS" if _chance(rng, cfg.visa_pv_chance) else "COMMON_POOL"
        if visa == "COMMON_POOL" and pool_left < int(config.get("visa_pool_cost", 10)):
            visa = "VICTORY_POINTS"
        if visa == "COMMON_POOL":
            pool_left -= int(config.get("visa_pool_cost", 10))
        tokens = cfg.illegal_tokens if _chance(rng, cfg.illegal_tokens_chance) else legal
        payload = {"stage": "INITIAL", "visa_choice": visa, "tokens_entering": tokens}
        submissions.record(store, "sheriff_choice", bot, payload, source=submissions.SOURCE_BOT)
        results.append(_result(bot, "CHOICE", visa_choice=visa, tokens_entering=tokens))
    return results


def synthesize_sheriff_duels(store: GameStore, rng: random.Random) -> List[Dict[str, Any]]:
    """Décisions de fouille pour les bots engagés dans le duel actif."""
    cfg = config_for(store, SheriffBotConfig)
    legal = int(store.game["config"].get("legal_tokens", 20))
    choices = {row["seat"]: row for row in submissions.latest(store, "sheriff_choice", stage="INITIAL").values()}
    finals = {row["seat"]: row for row in submissions.latest(store, "sheriff_choice", stage="FINAL").values()}
    results = []
    for duel in store.rows("duels", status="ACTIVE"):
        for seat, opponent in ((duel["seat1"], duel["seat2"]), (duel["seat2"], duel["seat1"])):
            player = store.player_by_seat(seat)
            if not player or not player.get("is_bot"):
                continue
            if submissions.has_submission(store, "duel_decision", player["player_id"], duel_id=duel["id"]):
                continue
            source = finals if duel.get("is_final") else choices
            opponent_tokens = int((source.get(opponent) or choices.get(opponent) or {}).get("tokens_entering") or legal)
            suspicious = opponent_tokens > legal
            searches = _chance(rng, cfg.search_if_suspicious if suspicious else cfg.search_chance)
            submissions.record(store, "duel_decision", player, {"duel_id": duel["id"], "searches": searches},
                               source=submissions.SOURCE_BOT)
            results.append(_result(player, "DUEL", duel_id=duel["id"], searches=searches))
    return results


def synthesize_sheriff_final_tokens(store: GameStore, rng: random.Random) -> List[Dict[str, Any]]:
    cfg = config_for(store, SheriffBotConfig)
    legal = int(store.game["config"].get("legal_tokens", 20))
    final = store.first("duels", is_final=True)
    if not final:
        return []
    results = []
    for seat in (final["seat1"], final["seat2"]):
        player = store.player_by_seat(seat)
        if not player or not player.get("is_bot"):
            continue
        if submissions.has_submission(store, "sheriff_choice", player["player_id"], stage="FINAL"):
            continue
        tokens = rng.randint(legal + 1, legal + 10) if _chance(rng, cfg.illegal_tokens_chance) else legal
        submissions.record(store, "sheriff_choice", player, {"stage": "FINAL", "tokens_entering": tokens},
                           source=submissions.SOURCE_BOT)
        results.append(_result(player, "FINAL_TOKENS", tokens_entering=tokens))
    return results


# ---------------------------------------------------------------------------
# Rivières
# ---------------------------------------------------------------------------

def stay_probability(
    manche: int,
    level: int,
    validated_levels: int,
    danger: Optional[float],
    tokens: int,
    cfg: RivieresBotConfig,
) -> float:
    if manche == 1:
        p = 0.92 if level <= 3 else 0.85
    elif manche == 2:
        if level <= 2:
            p = 0.88
        elif level <= 4:
            p = 0.80
        else:
            p = 0.50 if validated_levels >= 9 else 0.75
    elif validated_levels >= 9:
        p = 0.60 if level <= 2 else 0.40
    else:
        p = 0.75 if level <= 3 else 0.55

    if danger is not None:
        if danger > cfg.high_danger:
            p -= cfg.high_danger_malus
        elif danger < cfg.low_danger:
            p += cfg.low_danger_bonus
    if tokens < 20:
        p += 0.05
    elif tokens > 150:
        p -= 0.05
    return max(0.20, min(0.95, p))


def river_decision(
    player: Dict[str, Any],
    state: Dict[str, Any],
    manche: int,
    level: int,
    danger: Optional[int],
    terminal_level: int,
    cfg: RivieresBotConfig,
    rng: random.Random,
) -> Dict[str, Any]:
    tokens = int(player.get("tokens") or 0)
    p = stay_probability(manche, level, int(state.get("validated_levels") or 0), danger, tokens, cfg)
    decision = "RESTE" if rng.random() < p else "DESCENDS"
    stake = 0
    if decision == "RESTE":
        ratio = cfg.stake_min_ratio + rng.random() * (cfg.stake_max_ratio - cfg.stake_min_ratio)
        stake = max(0, min(tokens, math.floor(tokens * ratio)))
    keryndes = None
    if player.get("team") == cfg.ability_team and state.get("keryndes_available") and decision == "RESTE":
        critical = level >= terminal_level or (danger is not None and danger > cfg.av1_danger)
        if critical and rng.random() < cfg.av1_chance:
            keryndes = "AV1_CANOT"
        elif manche >= 2 and rng.random() < cfg.av2_chance:
            keryndes = "AV2_REDUCE"
    return {"decision": decision, "stake": stake, "keryndes": keryndes}


def synthesize_rivieres(store: GameStore, rng: random.Random) -> List[Dict[str, Any]]:
    cfg = config_for(store, RivieresBotConfig)
    extra = store.game.get("extra") or {}
    level = int(extra.get("level") or 1)
    danger = extra.get("danger_raw")
    terminal = int(store.game["config"].get("river_levels", 5))
    states = {row["player_id"]: row for row in store.rows("river_states")}
    results = []
    for bot in _pending_bots(store, "river", level=level):
        state = states.get(bot["player_id"])
        if not state or state.get("status") != "EN_BATEAU":
            continue
        payload = river_decision(bot, state, store.game["round"], level, danger, terminal, cfg, rng)
        submissions.record(store, "river", bot, {**payload, "level": level}, source=submissions.SOURCE_BOT)
        results.append(_result(bot, payload["decision"], stake=payload["stake"], keryndes=payload["keryndes"]))
    return results


# ---------------------------------------------------------------------------
# Infection
# ---------------------------------------------------------------------------

def _infection_memory(store: GameStore) -> Dict[str, Any]:
    memory = {"ae_sabotage_count": 0, "oc_pv_targets": []}
    for entry in store.mj_log:
        if entry.get("kind") == "SABOTAGE_SUCCESS":
            memory["ae_sabotage_count"] += 1
        elif entry.get("kind") == "OC_CONSULT":
            payload = entry.get("payload") or {}
            if payload.get("target_role") == "PV" and payload.get("target_seat"):
                memory["oc_pv_targets"].append(payload["target_seat"])
    return memory


def synthesize_infection(store: GameStore, rng: random.Random) -> List[Dict[str, Any]]:
    cfg = config_for(store, InfectionBotConfig)
    manche = store.game["round"]
    alive = [p for p in store.active_players() if p.get("is_alive", True)]
    ledger = Ledger(store)
    memory = _infection_memory(store)
    existing = submissions.latest(store, "infection")

    def pick(exclude_seats=(), exclude_roles=()) -> Optional[int]:
        pool = [p["seat"] for p in alive if p["seat"] not in exclude_seats and p.get("role") not in exclude_roles]
        return rng.choice(pool) if pool else None

    sy_target = None
    for player in alive:
        if player.get("role") == "SY" and not player.get("is_bot"):
            row = existing.get(player["player_id"])
            if row and row.get("action") == "RECHERCHE_SY" and row.get("target_seat"):
                sy_target = row["target_seat"]
                break
    if sy_target is None:
        non_sy = [p for p in alive if p.get("role") != "SY"]
        humans = [p for p in non_sy if not p.get("is_bot")]
        pool = humans or non_sy
        sy_target = rng.choice(pool)["seat"] if pool else None

    ba = next((p for p in alive if p.get("role") == "BA"), None)
    results = []
    for bot in _pending_bots(store, "infection"):
        if not bot.get("is_alive", True):
            continue
        role = bot.get("role")
        seat = bot["seat"]
        payload: Optional[Dict[str, Any]] = None
        skipped = None
        if role == "BA":
            if ledger.item_count(bot, "Balle BA") < 1:
                skipped = "Pas de balle"
            elif not _chance(rng, cfg.ba_shoot_chance):
                skipped = "Choisit de ne pas tirer"
            else:
                target = None
                known = [s for s in memory["oc_pv_targets"] if any(p["seat"] == s for p in alive)]
                chance = cfg.oc_pv_target_base / 100 + (manche - 1) * cfg.oc_pv_target_increment / 100
                if known and rng.random() < min(chance, 0.9):
                    target = rng.choice(known)
                target = target or pick(exclude_seats=(seat,))
                if target:
                    payload = {"action": "SHOT", "target_seat": target, "item_name": "Balle BA"}
        elif role == "PV":
            other_pv = [p["seat"] for p in alive if p.get("role") == "PV" and p["seat"] != seat]
            if manche == 1:
                target = pick(exclude_seats=(seat,), exclude_roles=("PV",))
                if target:
                    payload = {"action": "PATIENT_0", "target_seat": target}
            elif bot.get("is_carrier") and ledger.item_count(bot, "Antidote PV") > 0 \
                    and _chance(rng, cfg.pv_antidote_chance):
                payload = {"action": "ANTIDOTE", "target_seat": seat, "item_name": "Antidote PV"}
            elif ledger.item_count(bot, "Balle PV") > 0 and _chance(rng, cfg.pv_shoot_chance):
                target = pick(exclude_seats=(seat, *other_pv))
                if target:
                    payload = {"action": "SHOT", "target_seat": target, "item_name": "Balle PV"}
        elif role == "SY":
            if sy_target and sy_target != seat:
                payload = {"action": "RECHERCHE_SY", "target_seat": sy_target}
        elif role == "AE":
            if ba is None:
                skipped = "Pas de BA à saboter"
            else:
                chance = cfg.ae_sabotage_after_success if memory["ae_sabotage_count"] > 0 else cfg.ae_sabotage_base
                target = ba["seat"] if _chance(rng, chance) else pick(exclude_seats=(seat,), exclude_roles=("AE",))
                if target:
                    payload = {"action": "SABOTAGE", "target_seat": target}
        elif role == "OC":
            if ledger.item_count(bot, "Boule de cristal") < 1:
                skipped = "Pas de boule de cristal"
            else:
                target = pick(exclude_seats=(seat, *memory["oc_pv_targets"]), exclude_roles=("OC",))
                if target:
                    payload = {"action": "OC_LOOKUP", "target_seat": target, "item_name": "Boule de cristal"}
        elif role == "CV":
            ae = next((p for p in alive if p.get("role") == "AE"), None)
            tokens = int(bot.get("tokens") or 0)
            if memory["ae_sabotage_count"] >= 2 and ae and tokens >= cfg.corruption_min:
                amount = rng.randint(cfg.corruption_min, min(cfg.corruption_max, tokens))
                payload = {"action": "CORRUPTION", "target_seat": ae["seat"], "amount": amount}
            else:
                skipped = "Rôle passif"
        else:
            skipped = "Rôle passif"

        if payload is None:
            results.append(_result(bot, None, skipped_reason=skipped or "Aucune cible valide"))
            continue
        submissions.record(store, "infection", bot, payload, source=submissions.SOURCE_BOT)
        results.append(_result(bot, payload["action"], target_seat=payload.get("target_seat")))
    return results


def synthesize(store: GameStore, rng: random.Random) -> List[Dict[str, Any]]:
    """Point d'entrée unique : décisions bots pour la phase courante de la partie."""
    game_type = store.game.get("game_type")
    phase = store.game.get("phase")
    if game_type == "FORET":
        results = synthesize_foret(store, rng)
    elif game_type == "SHERIFF":
        if phase == "CHOICES":
            results = synthesize_sheriff_choices(store, rng)
        elif phase == "FINAL_DUEL":
            results = synthesize_sheriff_final_tokens(store, rng) + synthesize_sheriff_duels(store, rng)
        else:
            results = synthesize_sheriff_duels(store, rng)
    elif game_type == "RIVIERES":
        results = synthesize_rivieres(store, rng)
    elif game_type == "INFECTION":
        results = synthesize_infection(store, rng)
    else:
        results = []
    logger.info("bots %s/%s: %d decisions", store.game_id, phase, len([r for r in results if r.get("action")]))
    return results
