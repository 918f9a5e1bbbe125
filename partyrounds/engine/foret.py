"""
Orchestrateurs de la Forêt.

Manche : PHASE1_MISES -> (close_bets) -> PHASE2_POSITIONS -> (publish_positions,
resolve_combat) -> PHASE3_SHOP -> (generate_shop, resolve_shop) -> manche suivante.

Chaque fonction s'exécute dans la transaction ouverte par `resolvers.run_step` :
elle vérifie phase / verrou / marqueur avant la première écriture, et toute
exception annule l'ensemble des mutations.
"""
from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Optional

from partyrounds.services import audit, phase_machine, submissions
from partyrounds.services.allocation import ShopRequest, allocate_positions, allocate_shop
from partyrounds.services.catalog import CATALOG, FIXED_SHOP_ITEMS
from partyrounds.services.combat import BERSERKER_PENALTY, resolve_combat_round
from partyrounds.services.game_store import GameStore
from partyrounds.services.ledger import Ledger
from partyrounds.services.ranking import BidInput, rank_bids
from .errors import PreconditionFailed

logger = logging.getLogger(__name__)

GAME_TYPE = "FORET"
SHOP_SIZE = 5


# ---------------------------------------------------------------------------
# Mises
# ---------------------------------------------------------------------------

def close_bets(store: GameStore) -> Dict[str, Any]:
    """Clôture des mises : classement de priorité + débit immédiat des mises effectives."""
    game = store.game
    phase_machine.ensure_phase(game, "PHASE1_MISES", game_type=GAME_TYPE)
    marker = phase_machine.round_marker(game, "bets")
    if phase_machine.is_resolved(game, marker):
        raise PreconditionFailed("Mises déjà clôturées pour cette manche", details={"round": game["round"]})

    phase_machine.lock_phase(game)
    phase_machine.mark_resolved(game, marker)

    ledger = Ledger(store)
    players = store.active_players()
    bets = submissions.latest(store, "bet")
    bids = [
        BidInput(
            player_id=p["player_id"],
            seat=p["seat"],
            display_name=p["display_name"],
            requested=(bets.get(p["player_id"]) or {}).get("amount"),
            balance=ledger.balance(p),
        )
        for p in players
    ]
    ranking = rank_bids(bids, game["config"].get("tie_start_direction", "ASC"))

    submissions.freeze(store, "bet", {
        entry.player_id: {"effective": entry.effective_bid, "note": entry.note} for entry in ranking
    })
    for entry in ranking:
        if entry.effective_bid:
            ledger.debit(store.get_player(entry.player_id), entry.effective_bid, "mise")
        store.insert("rankings", {**entry.to_row(), "round": game["round"]})

    audit.emit(
        store, "BETS_CLOSED",
        public="Ordre de priorité : " + ", ".join(f"{e.rank}. {e.display_name}" for e in ranking),
        public_payload={"ranking": [{"rank": e.rank, "display_name": e.display_name, "seat": e.seat}
                                    for e in ranking]},
        mj="Mises clôturées",
        mj_payload={"ranking": [e.to_row() for e in ranking]},
    )
    phase_machine.advance_phase(game, "PHASE2_POSITIONS")
    return {"round": game["round"], "ranking": [e.to_row() for e in ranking]}


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

def publish_positions(store: GameStore) -> Dict[str, Any]:
    """
    Attribution des positions finales dans l'ordre de priorité.
    Un état « verrouillé sans ligne de position » se rejoue normalement.
    """
    game = store.game
    phase_machine.ensure_phase(game, "PHASE2_POSITIONS", game_type=GAME_TYPE)
    rnd = game["round"]
    marker = phase_machine.round_marker(game, "positions")
    if store.rows("positions", round=rnd):
        raise PreconditionFailed("Positions déjà publiées pour cette manche", details={"round": rnd})
    if phase_machine.is_resolved(game, marker):
        logger.warning("game %s: positions marker without rows, retrying", store.game_id)
        phase_machine.clear_marker(game, marker)

    ranking = sorted(store.rows("rankings", round=rnd), key=lambda r: r["rank"])
    if not ranking:
        raise PreconditionFailed("Classement de la manche absent : clôturer les mises d'abord")
    order = [r["player_id"] for r in ranking
             if (store.get_player(r["player_id"]) or {}).get("status") == "ACTIVE"]
    ranks = {r["player_id"]: r["rank"] for r in ranking}

    phase_machine.lock_phase(game)
    phase_machine.mark_resolved(game, marker)

    actions = submissions.latest(store, "action")
    desired = {pid: (actions.get(pid) or {}).get("desired_position") for pid in order}
    assigned = allocate_positions(order, desired)

    submissions.freeze(store, "action", {pid: {"effective": assigned[pid]} for pid in order})
    rows = []
    for pid in order:
        player = store.get_player(pid)
        action = actions.get(pid) or {}
        rows.append(store.insert("positions", {
            "round": rnd,
            "player_id": pid,
            "seat": player["seat"],
            "display_name": player["display_name"],
            "team": player.get("team"),
            "rank": ranks[pid],
            "desired_position": desired[pid],
            "position": assigned[pid],
            "attack_slot": action.get("attack_slot"),
            "attack1": action.get("attack1"),
            "attack2": action.get("attack2"),
            "protection": action.get("protection"),
            "protection_slot": action.get("protection_slot"),
        }))
    rows.sort(key=lambda r: r["position"])

    audit.emit(
        store, "POSITIONS_PUBLISHED",
        public="Positions : " + ", ".join(f"{r['position']}. {r['display_name']}" for r in rows),
        public_payload={"positions": [{"position": r["position"], "display_name": r["display_name"]} for r in rows]},
        mj="Positions finales attribuées",
        mj_payload={"positions": rows},
    )
    return {"round": rnd, "positions": rows}


# ---------------------------------------------------------------------------
# Combat
# ---------------------------------------------------------------------------

def _replace_dead_monsters(store: GameStore) -> List[Dict[str, Any]]:
    replacements = []
    queue = sorted(store.rows("monsters", status="EN_FILE"), key=lambda m: m.get("queue_order") or 0)
    for dead in store.rows("monsters", status="MORT"):
        slot = dead.get("battlefield_slot")
        if not slot:
            continue
        dead["battlefield_slot"] = None
        if not queue:
            continue
        nxt = queue.pop(0)
        nxt.update({"status": "EN_BATAILLE", "battlefield_slot": slot, "queue_order": None})
        replacements.append({"slot": slot, "dead": dead["name"], "new": nxt["name"]})
    return replacements


def resolve_combat(store: GameStore) -> Dict[str, Any]:
    game = store.game
    marker = phase_machine.round_marker(game, "combat")
    if phase_machine.is_resolved(game, marker):
        cached = store.first("combat_results", round=game["round"]) or {}
        return {"alreadyResolved": True, "round": game["round"], **cached.get("public", {})}
    phase_machine.ensure_phase(game, "PHASE2_POSITIONS", locked=True, game_type=GAME_TYPE)
    positions = store.rows("positions", round=game["round"])
    if not positions:
        raise PreconditionFailed("Positions non publiées pour cette manche")

    phase_machine.mark_resolved(game, marker)
    ledger = Ledger(store)
    config = game["config"]
    monsters = {m["battlefield_slot"]: m for m in store.rows("monsters", status="EN_BATAILLE")}

    def has_item(player_id: str, item_name: str) -> bool:
        return ledger.item_count(store.get_player(player_id), item_name) > 0

    outcome = resolve_combat_round(positions, monsters, has_item, bonus_team=config.get("bonus_team", "Akandé"))

    missing = []
    for use in outcome.consumed:
        player = store.get_player(use["player_id"])
        if not (use["was_in_inventory"] and ledger.consume_item(player, use["item_name"])):
            missing.append(use)
    for kill in outcome.kills:
        ledger.add_victory_points(store.get_player(kill["player_id"]), kill["reward"], f"kill {kill['monster_name']}")
    penalties = {}
    for pid in outcome.berserker_penalties:
        penalties[pid] = ledger.debit_floor(store.get_player(pid), BERSERKER_PENALTY, "piqure berseker")
    replacements = _replace_dead_monsters(store)

    public = {
        "actions": outcome.public_actions,
        "kills": [{"display_name": k["display_name"], "monster_name": k["monster_name"], "reward": k["reward"]}
                  for k in outcome.kills],
        "replacements": replacements,
    }
    store.insert("combat_results", {
        "round": game["round"],
        "public": public,
        "mj_actions": outcome.mj_actions,
        "kills": outcome.kills,
        "consumed": outcome.consumed,
        "berserker_penalties": penalties,
    })

    audit.emit(
        store, "COMBAT_RESOLVED",
        public=f"Combat terminé : {len(outcome.kills)} monstre(s) abattu(s)",
        public_payload=public,
        mj="Détail du combat",
        mj_payload={"actions": outcome.mj_actions, "kills": outcome.kills, "penalties": penalties},
    )
    if missing:
        audit.mj_only(store, "ITEMS_MISSING", "Objets utilisés absents de l'inventaire", {"uses": missing})

    if not store.rows("monsters", status="EN_BATAILLE"):
        phase_machine.end_game(game)
        audit.emit(store, "GAME_ENDED", public="Tous les monstres sont vaincus : fin de la partie")
    else:
        phase_machine.advance_phase(game, "PHASE3_SHOP")
    return {"round": game["round"], **public}


# ---------------------------------------------------------------------------
# Boutique
# ---------------------------------------------------------------------------

def build_offer(store: GameStore, rng: random.Random) -> List[str]:
    """Offre à 5 emplacements : 2 objets fixes + 1 protection + 2 attaques tirées au hasard."""
    bought = {row["item_name"] for row in store.tables["purchases"] if row.get("approved")}
    candidates = [
        item for item in CATALOG.items()
        if item.get("purchasable", True)
        and item.get("cost_normal")
        and item["name"] not in FIXED_SHOP_ITEMS
        and (item.get("restockable", True) or item["name"] not in bought)
    ]
    protections = [i["name"] for i in candidates if i["category"] == "PROTECTION"]
    attacks = [i["name"] for i in candidates if i["category"] == "ATTAQUE"]
    offer = list(FIXED_SHOP_ITEMS)
    offer += rng.sample(protections, min(1, len(protections)))
    offer += rng.sample(attacks, min(2, len(attacks)))
    filler = 0
    while len(offer) < SHOP_SIZE:
        offer.append(FIXED_SHOP_ITEMS[filler % len(FIXED_SHOP_ITEMS)])
        filler += 1
    return offer


def generate_shop(store: GameStore, seed: Optional[Any] = None) -> Dict[str, Any]:
    game = store.game
    phase_machine.ensure_phase(game, "PHASE3_SHOP", game_type=GAME_TYPE)
    existing = store.first("shop_offers", round=game["round"])
    if existing:
        return {"alreadyResolved": True, "round": game["round"], "items": existing["items"]}
    items = build_offer(store, random.Random(seed))
    store.insert("shop_offers", {"round": game["round"], "items": items})
    discount_team = game["config"].get("discount_team", "")
    prices = {name: {"normal": CATALOG.price(name, None, discount_team),
                     "discount": CATALOG.price(name, discount_team, discount_team)} for name in items}
    audit.emit(store, "SHOP_OPENED", public="Boutique ouverte : " + ", ".join(items),
               public_payload={"items": items, "prices": prices})
    return {"round": game["round"], "items": items, "prices": prices}


def _purchases_result(store: GameStore, rnd: int) -> Dict[str, Any]:
    return {"round": rnd, "purchases": store.rows("purchases", round=rnd)}


def resolve_shop(store: GameStore, round_number: Optional[int] = None) -> Dict[str, Any]:
    """Achats dans l'ordre de priorité, puis revenu de manche et manche suivante."""
    game = store.game
    rnd = round_number
    if rnd is None:
        rnd = game["round"] - 1 if game.get("phase") == "PHASE1_MISES" else game["round"]
    if rnd >= 1 and f"{rnd}:shop" in (game.get("resolved") or []):
        return {"alreadyResolved": True, **_purchases_result(store, rnd)}
    if round_number is not None and round_number != game["round"]:
        raise PreconditionFailed(
            "Boutique d'une autre manche non résolue",
            details={"requested": round_number, "round": game["round"]},
        )

    phase_machine.ensure_phase(game, "PHASE3_SHOP", game_type=GAME_TYPE)
    rnd = game["round"]
    offer = store.first("shop_offers", round=rnd)
    if not offer:
        raise PreconditionFailed("Boutique non générée pour cette manche")
    ranking = sorted(store.rows("rankings", round=rnd), key=lambda r: r["rank"])
    if not ranking:
        raise PreconditionFailed("Classement de la manche absent")

    phase_machine.lock_phase(game)
    phase_machine.mark_resolved(game, phase_machine.round_marker(game, "shop"))

    ledger = Ledger(store)
    config = game["config"]
    wanted = submissions.latest(store, "shop")
    requests = []
    for entry in ranking:
        player = store.get_player(entry["player_id"])
        row = wanted.get(entry["player_id"])
        if not player or player.get("status") != "ACTIVE" or not row or not row.get("want_buy"):
            continue
        requests.append(ShopRequest(
            player_id=player["player_id"],
            seat=player["seat"],
            display_name=player["display_name"],
            rank=entry["rank"],
            item_name=row.get("item_name"),
            balance=ledger.balance(player),
            team=player.get("team"),
        ))

    def price_for(item_name: str, request: ShopRequest) -> Optional[int]:
        return CATALOG.price(item_name, request.team, config.get("discount_team", ""))

    allocation = allocate_shop(requests, offer["items"], price_for)
    for decision in allocation.approved:
        player = store.get_player(decision.player_id)
        ledger.debit(player, decision.cost, f"achat {decision.item_name}")
        item = CATALOG.item(decision.item_name) or {}
        ledger.grant_item(player, decision.item_name, 1, attack_usable=item.get("category") == "ATTAQUE")
    for decision in allocation.decisions:
        store.insert("purchases", {**decision.to_row(), "round": rnd})
    submissions.freeze(store, "shop", {
        d.player_id: {"effective": d.item_name if d.approved else None, "note": d.reason}
        for d in allocation.decisions
    })

    buyers = {d.player_id for d in allocation.approved}
    players = store.active_players()
    audit.emit(
        store, "SHOP_RESOLVED",
        public="Achats : " + (", ".join(p["display_name"] for p in players if p["player_id"] in buyers) or "aucun"),
        public_payload={
            "purchased": [p["display_name"] for p in players if p["player_id"] in buyers],
            "not_purchased": [p["display_name"] for p in players if p["player_id"] not in buyers],
        },
        mj="Résolution de la boutique",
        mj_payload={"decisions": [d.to_row() for d in allocation.decisions], "stock": allocation.remaining},
    )

    income = int(config.get("round_income", 0))
    for player in players:
        if income:
            ledger.credit(player, income, "revenu de manche")
    if income:
        audit.emit(store, "ROUND_INCOME", public=f"Chaque joueur reçoit {income} jetons")

    if not phase_machine.next_round(game):
        audit.emit(store, "GAME_ENDED", public="Nombre maximal de manches atteint : fin de la partie")
    return {**_purchases_result(store, rnd), "stock": allocation.remaining}
