"""
Mise en place d'une partie : création, lobby (join / bots / kick), démarrage,
étape suivante du mode aventure.

Ces opérations sont idempotentes côté persistance : la sauvegarde est
rejouée avec backoff exponentiel en cas d'erreur d'E/S
(`SETUP_RETRY_ATTEMPTS`, `SETUP_RETRY_BACKOFF`). Les résolutions de manche,
elles, ne sont jamais rejouées automatiquement.
"""
from __future__ import annotations

import logging
import random
import secrets
import time
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from partyrounds.config.settings import settings
from partyrounds.models.game import GameCreate, default_config
from partyrounds.models.player import Player
from partyrounds.services import audit, phase_machine
from partyrounds.services.catalog import CATALOG, DEFAULT_WEAPON
from partyrounds.services.game_store import GameStore
from partyrounds.services.io_utils import write_json
from partyrounds.services.ledger import Ledger
from partyrounds.services.store_registry import create_store
from partyrounds.utils.team_utils import assign_clans, assign_mates
from .errors import Conflict, NotFound, PreconditionFailed

logger = logging.getLogger(__name__)

FORET_CLANS = ("Akila", "Akandé", "Keryndes")
RIVIERES_CLANS = ("Akila", "Keryndes", "Zoulous")
BOT_NAMES = ("Bot Aldo", "Bot Brume", "Bot Cerise", "Bot Dune", "Bot Ecorce", "Bot Faon",
             "Bot Givre", "Bot Houx", "Bot Iris", "Bot Jonc", "Bot Kaki", "Bot Lierre")

INFECTION_ITEMS = {
    "BA": (("Balle BA", 1, True),),
    "PV": (("Balle PV", 1, True), ("Antidote PV", 1, False)),
    "OC": (("Boule de cristal", 1, False),),
}


def with_retry(operation: Callable[[], Any], label: str) -> Any:
    """Rejoue une opération idempotente sur erreur d'E/S (backoff exponentiel)."""
    attempts = max(1, settings.SETUP_RETRY_ATTEMPTS)
    for attempt in range(attempts):
        try:
            return operation()
        except OSError:
            if attempt + 1 >= attempts:
                logger.error("%s failed after %d attempts", label, attempts)
                raise
            delay = settings.SETUP_RETRY_BACKOFF * (2 ** attempt)
            logger.warning("%s failed (attempt %d), retry in %.2fs", label, attempt + 1, delay)
            time.sleep(delay)


def _persist(store: GameStore, label: str) -> Callable[[], None]:
    return lambda: with_retry(store.save, label)


# ---------------------------------------------------------------------------
# Lobby
# ---------------------------------------------------------------------------

def create_game(payload: GameCreate, host: Dict[str, Any]) -> GameStore:
    steps = list(payload.steps or [payload.game_type])
    if payload.mode == "SINGLE":
        steps = [payload.game_type]
    elif steps[0] != payload.game_type:
        steps.insert(0, payload.game_type)

    store = with_retry(create_store, "create_game")
    with store.transaction(persist=_persist(store, "create_game")):
        game = store.game
        game.update({
            "name": payload.name,
            "game_type": payload.game_type,
            "host_user_id": host["user_id"],
            "mode": payload.mode,
            "steps": steps,
            "step_index": 0,
            "config": default_config(payload.game_type, payload.config),
            "config_overrides": dict(payload.config),
            "bot_config": dict(payload.bot_config),
        })
        audit.emit(store, "GAME_CREATED", public=f"Partie « {payload.name} » créée",
                   mj=f"Partie {store.game_id} créée par {host['user_id']}",
                   mj_payload={"steps": steps, "config": game["config"]})
    logger.info("game %s created (%s)", store.game_id, payload.game_type)
    return store


def _ensure_lobby(store: GameStore) -> None:
    if store.game.get("status") != phase_machine.GAME_STATUS_LOBBY:
        raise PreconditionFailed("La partie a déjà commencé", details={"status": store.game.get("status")})


def next_free_seat(store: GameStore) -> int:
    taken = {p["seat"] for p in store.active_players()}
    seat = 1
    while seat in taken:
        seat += 1
    return seat


def _new_player(store: GameStore, display_name: str, *, user_id: Optional[str], is_bot: bool) -> Dict[str, Any]:
    player = Player(
        player_id=uuid4().hex,
        user_id=user_id,
        display_name=display_name,
        seat=next_free_seat(store),
        is_bot=is_bot,
        player_token=secrets.token_urlsafe(16),
    ).model_dump()
    store.players[player["player_id"]] = player
    return player


def join_game(store: GameStore, display_name: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    name = (display_name or "").strip()
    if not name:
        raise PreconditionFailed("Nom de joueur requis")
    with store.transaction():
        _ensure_lobby(store)
        for player in store.active_players():
            if user_id and player.get("user_id") == user_id:
                raise Conflict("Déjà inscrit dans cette partie", details={"player_id": player["player_id"]})
            if player["display_name"].casefold() == name.casefold():
                raise Conflict("Nom déjà utilisé dans cette partie", details={"display_name": name})
        player = _new_player(store, name, user_id=user_id, is_bot=False)
        audit.emit(store, "PLAYER_JOINED", public=f"{name} rejoint la partie (siège {player['seat']})",
                   public_payload={"seat": player["seat"]})
    return player


def add_bots(store: GameStore, count: int, with_mates: bool = False) -> List[Dict[str, Any]]:
    """Ajoute des bots ; `with_mates` les associe en binômes entre eux."""
    if count < 1:
        raise PreconditionFailed("Nombre de bots invalide", details={"count": count})
    created = []
    with store.transaction():
        _ensure_lobby(store)
        used = {p["display_name"] for p in store.active_players()}
        names = [n for n in BOT_NAMES if n not in used]
        for i in range(count):
            name = names[i] if i < len(names) else f"Bot {next_free_seat(store)}"
            created.append(_new_player(store, name, user_id=None, is_bot=True))
        if with_mates:
            links = assign_mates([b["seat"] for b in created])
            for bot in created:
                bot["mate_seat"] = links.get(bot["seat"])
        audit.emit(store, "BOTS_ADDED", public=f"{count} bot(s) ajouté(s)",
                   public_payload={"seats": [p["seat"] for p in created]})
    return created


def kick_player(store: GameStore, player_id: str) -> Dict[str, Any]:
    """Retrait logique : le siège est libéré, la fiche reste."""
    with store.transaction():
        player = store.get_player(player_id)
        if not player or player.get("status") != "ACTIVE":
            raise NotFound("Joueur introuvable", details={"player_id": player_id})
        player["status"] = "REMOVED"
        player["removed_at"] = time.time()
        _unlink_mate(store, player)
        audit.emit(store, "PLAYER_KICKED", public=f"{player['display_name']} a quitté la partie",
                   mj=f"{player['display_name']} (siège {player['seat']}) retiré",
                   mj_payload={"player_id": player_id})
    return player



def _unlink_mate(store: GameStore, player: Dict[str, Any]) -> None:
    mate = store.player_by_seat(player.get("mate_seat")) if player.get("mate_seat") else None
    if mate is not None and mate.get("mate_seat") == player["seat"]:
        mate["mate_seat"] = None
    player["mate_seat"] = None


def set_mates(store: GameStore, seat1: int, seat2: Optional[int] = None) -> Dict[str, Any]:
    """
    Lie deux sièges en binôme (lien symétrique), ou délie `seat1` si `seat2`
    est absent. Les liens précédents des deux joueurs sont défaits.
    """
    with store.transaction():
        _ensure_lobby(store)
        first = store.player_by_seat(seat1)
        second = store.player_by_seat(seat2) if seat2 is not None else None
        if first is None or (seat2 is not None and second is None):
            raise NotFound("Siège introuvable", details={"seat1": seat1, "seat2": seat2})
        if second is first:
            raise PreconditionFailed("Un joueur ne peut pas être son propre binôme")
        _unlink_mate(store, first)
        if second is not None:
            _unlink_mate(store, second)
            first["mate_seat"], second["mate_seat"] = second["seat"], first["seat"]
            audit.emit(store, "MATES_SET", public=f"{first['display_name']} et {second['display_name']} font équipe",
                       public_payload={"seats": [first["seat"], second["seat"]]})
        else:
            audit.mj_only(store, "MATES_CLEARED", f"Binôme du siège {seat1} retiré", {"seat": seat1})
    return {"seat1": seat1, "seat2": seat2}

# ---------------------------------------------------------------------------
# Démarrage par type de jeu
# ---------------------------------------------------------------------------

def infection_roles(count: int) -> List[str]:
    """Distribution des rôles Infection selon l'effectif."""
    if count >= 9:
        roles = ["BA", "PV", "PV", "SY", "SY", "AE", "OC", "KK"] + ["CV"] * (count - 8)
    elif count == 8:
        roles = ["BA", "PV", "PV", "SY", "SY", "OC", "KK", "CV"]
    elif count == 7:
        roles = ["BA", "PV", "PV", "SY", "SY", "OC", "CV"]
    else:
        roles = ["BA", "PV", "SY", "CV", "OC", "SY"][:count]
    return roles


def _setup_foret(store: GameStore, rng: random.Random) -> None:
    ledger = Ledger(store)
    players = store.active_players()
    missing = [p["player_id"] for p in players if not p.get("team")]
    clans = assign_clans(missing, FORET_CLANS, seed=rng.random())
    for player in players:
        player["team"] = player.get("team") or clans.get(player["player_id"])
        ledger.grant_item(player, DEFAULT_WEAPON, 1, attack_usable=True, permanent=True)
    slots = int(store.game["config"].get("battlefield_slots", 3))
    for index, monster in enumerate(CATALOG.monsters()):
        on_field = index < slots
        store.insert("monsters", {
            **monster,
            "pv_current": monster["pv_max"],
            "status": "EN_BATAILLE" if on_field else "EN_FILE",
            "battlefield_slot": index + 1 if on_field else None,
            "queue_order": None if on_field else index - slots + 1,
        })


def _setup_rivieres(store: GameStore, rng: random.Random) -> None:
    players = store.active_players()
    missing = [p["player_id"] for p in players if not p.get("team")]
    clans = assign_clans(missing, RIVIERES_CLANS, seed=rng.random())
    for player in players:
        player["team"] = player.get("team") or clans.get(player["player_id"])
        store.insert("river_states", {
            "player_id": player["player_id"],
            "seat": player["seat"],
            "status": "EN_BATEAU",
            "descended_level": None,
            "keryndes_available": player["team"] == "Keryndes",
            "validated_levels": 0,
        })
    store.game["extra"] = {"level": 1, "pot": 0, "danger_raw": None}


def _setup_sheriff(store: GameStore, rng: random.Random) -> None:
    config = store.game["config"]
    players = store.active_players()
    by_seat = {p["seat"]: p for p in players}
    for player in players:
        player["victory_points"] = int(config.get("starting_victory_points", 0))
        mate = by_seat.get(player.get("mate_seat"))
        if mate is None or mate.get("mate_seat") != player["seat"]:
            player["mate_seat"] = None
    if config.get("random_mates"):
        alone = [p["seat"] for p in players if not p.get("mate_seat")]
        for seat, mate_seat in assign_mates(alone, seed=rng.random()).items():
            by_seat[seat]["mate_seat"] = mate_seat
    store.game["extra"] = {
        "deltas": {str(p["seat"]): 0 for p in players},
        "common_pool": int(config.get("common_pool", 0)),
        "common_pool_pending": 0,
    }


def _setup_infection(store: GameStore, rng: random.Random) -> None:
    ledger = Ledger(store)
    players = store.active_players()
    roles = infection_roles(len(players))
    rng.shuffle(roles)
    for player, role in zip(players, roles):
        player.update({
            "role": role,
            "is_alive": True,
            "is_carrier": False,
            "is_contagious": False,
            "immune_permanent": False,
            "has_antibodies": False,
            "infected_at_round": None,
            "will_contaminate_at_round": None,
            "will_die_at_round": None,
        })
        for item, quantity, attack in INFECTION_ITEMS.get(role, ()):
            ledger.grant_item(player, item, quantity, attack_usable=attack)
    citizens = [p for p in players if p.get("role") == "CV"]
    if citizens:
        rng.choice(citizens)["has_antibodies"] = True
    store.game["extra"] = {
        "sy_success_count": 0,
        "sy_required_success": 2 if roles.count("SY") >= 2 else 3,
    }


_SETUPS = {
    "FORET": _setup_foret,
    "RIVIERES": _setup_rivieres,
    "SHERIFF": _setup_sheriff,
    "INFECTION": _setup_infection,
}


def _setup_game_type(store: GameStore, rng: random.Random) -> None:
    config = store.game["config"]
    for player in store.active_players():
        player["tokens"] = int(config.get("starting_tokens", 0))
    _SETUPS[store.game["game_type"]](store, rng)


def start_game(store: GameStore, seed: Optional[Any] = None) -> Dict[str, Any]:
    rng = random.Random(seed)
    with store.transaction(persist=_persist(store, "start_game")):
        _ensure_lobby(store)
        if not store.active_players():
            raise PreconditionFailed("Aucun joueur dans la partie")
        _setup_game_type(store, rng)
        phase_machine.start(store.game)
        audit.emit(store, "GAME_STARTED",
                   public=f"La partie commence ({store.game['game_type']})",
                   mj=f"Démarrage {store.game['game_type']} avec {len(store.active_players())} joueur(s)",
                   mj_payload={"players": [
                       {"seat": p["seat"], "team": p.get("team"), "role": p.get("role"), "tokens": p["tokens"]}
                       for p in store.active_players()
                   ]})
    return store.game


def next_step(store: GameStore, seed: Optional[Any] = None) -> Dict[str, Any]:
    """Mode aventure : archive les tables de l'étape et enchaîne le jeu suivant (manche 1)."""
    rng = random.Random(seed)
    with store.transaction(persist=_persist(store, "next_step")):
        game = store.game
        if game.get("mode") != "ADVENTURE":
            raise PreconditionFailed("Disponible uniquement en mode aventure")
        phase_machine.ensure_in_game(game)
        finished = game["game_type"]
        archive = store.game_dir() / f"step_{game.get('step_index', 0)}_{finished}.json"
        tables = {name: list(rows) for name, rows in store.tables.items()}
        with_retry(lambda: write_json(archive, tables), "archive_step")
        new_type = phase_machine.next_step(game)
        if new_type is None:
            audit.emit(store, "ADVENTURE_ENDED", public="Fin de l'aventure")
            return game
        for name in store.tables:
            store.tables[name] = []
        game["config"] = default_config(new_type, game.get("config_overrides"))
        for player in store.active_players():
            player["role"] = None
            player["mate_seat"] = None
        _setup_game_type(store, rng)
        audit.emit(store, "STEP_STARTED", public=f"Étape suivante : {new_type}",
                   mj=f"Étape {game['step_index']} ({finished} -> {new_type})",
                   mj_payload={"archive": archive.name})
    return store.game
