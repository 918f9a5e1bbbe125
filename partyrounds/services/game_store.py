"""
Service: game_store.py
Rôle :
- Stocker l'état complet d'une partie (fiche partie, joueurs, tables de manche,
  journaux public/MJ) et le persister.
- Offrir une transaction en mémoire : verrou + snapshot + rollback si exception,
  sauvegarde si succès.

Stockage (par partie) :
- `games/<game_id>/game.json`      (phase, manche, verrou, marqueurs de résolution)
- `games/<game_id>/players.json`
- `games/<game_id>/tables.json`    (soumissions, classements, positions, achats…)
- `games/<game_id>/public_log.ndjson` / `mj_log.ndjson` (journaux append-only)

Ordre d'écriture : la fiche partie (qui porte les marqueurs) est écrite en
premier, pour qu'une sauvegarde interrompue se lise comme « commencée ».
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional
from uuid import uuid4
import copy
import logging
import shutil
import time

from partyrounds.config.settings import settings
from .io_utils import read_json, write_json, read_ndjson, write_ndjson

logger = logging.getLogger(__name__)

GAMES_DIR = Path(settings.DATA_DIR) / "games"
GAME_FILENAME = "game.json"
PLAYERS_FILENAME = "players.json"
TABLES_FILENAME = "tables.json"
PUBLIC_LOG_FILENAME = "public_log.ndjson"
MJ_LOG_FILENAME = "mj_log.ndjson"

TABLES = (
    "bets",
    "actions",
    "shop_requests",
    "sheriff_choices",
    "duel_decisions",
    "river_decisions",
    "infection_inputs",
    "rankings",
    "positions",
    "shop_offers",
    "purchases",
    "inventory",
    "monsters",
    "combat_results",
    "duels",
    "river_states",
    "river_levels",
    "infection_rounds",
)


def _default_game(game_id: str) -> Dict[str, Any]:
    return {
        "game_id": game_id,
        "name": "",
        "game_type": None,
        "host_user_id": None,
        "status": "LOBBY",
        "round": 0,
        "phase": None,
        "phase_locked": False,
        "resolved": [],
        "version": 0,
        "mode": "SINGLE",
        "steps": [],
        "step_index": 0,
        "config": {},
        "bot_config": {},
        "extra": {},
        "auto_mode": False,
        "created_at": time.time(),
        "updated_at": time.time(),
    }


def _empty_tables() -> Dict[str, List[Dict[str, Any]]]:
    return {name: [] for name in TABLES}


def _matches(row: Dict[str, Any], where: Dict[str, Any]) -> bool:
    return all(row.get(key) == value for key, value in where.items())


@dataclass
class GameStore:
    game_id: str
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    game: Dict[str, Any] = field(default_factory=dict)
    players: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    tables: Dict[str, List[Dict[str, Any]]] = field(default_factory=_empty_tables)
    public_log: List[Dict[str, Any]] = field(default_factory=list)
    mj_log: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.game:
            self.game = _default_game(self.game_id)

    # -----------------------------
    # Chemins
    # -----------------------------
    def game_dir(self) -> Path:
        return GAMES_DIR / self.game_id

    def exists_on_disk(self) -> bool:
        return (self.game_dir() / GAME_FILENAME).exists()

    # -----------------------------
    # Chargement / Sauvegarde
    # -----------------------------
    def load(self) -> None:
        with self._lock:
            base = self.game_dir()
            game = read_json(base / GAME_FILENAME)
            players = read_json(base / PLAYERS_FILENAME)
            tables = read_json(base / TABLES_FILENAME)
            self.game = game or _default_game(self.game_id)
            self.players = players or {}
            self.tables = _empty_tables()
            for name, rows in (tables or {}).items():
                self.tables[name] = list(rows or [])
            self.public_log = read_ndjson(base / PUBLIC_LOG_FILENAME)
            self.mj_log = read_ndjson(base / MJ_LOG_FILENAME)

    def save(self) -> None:
        with self._lock:
            base = self.game_dir()
            write_json(base / GAME_FILENAME, self.game)
            write_json(base / PLAYERS_FILENAME, self.players)
            write_json(base / TABLES_FILENAME, self.tables)
            write_ndjson(base / PUBLIC_LOG_FILENAME, self.public_log)
            write_ndjson(base / MJ_LOG_FILENAME, self.mj_log)

    def reset(self) -> None:
        with self._lock:
            self.game = _default_game(self.game_id)
            self.players = {}
            self.tables = _empty_tables()
            self.public_log = []
            self.mj_log = []

    def delete_files(self) -> None:
        with self._lock:
            shutil.rmtree(self.game_dir(), ignore_errors=True)

    @contextmanager
    def transaction(self, persist: Optional[Callable[[], None]] = None) -> Iterator["GameStore"]:
        """
        Exécute un bloc de mutations de manière atomique (vis-à-vis du store).
        En cas d'exception (bloc ou persistance), l'état en mémoire est restauré
        puis l'exception est propagée; sinon l'état est persisté (`persist`,
        par défaut `save`).
        """
        with self._lock:
            snapshot = copy.deepcopy((self.game, self.players, self.tables))
            public_len, mj_len = len(self.public_log), len(self.mj_log)
            try:
                yield self
                self.game["updated_at"] = time.time()
                (persist or self.save)()
            except BaseException:
                self.game, self.players, self.tables = snapshot
                del self.public_log[public_len:]
                del self.mj_log[mj_len:]
                raise

    # -----------------------------
    # Joueurs
    # -----------------------------
    def get_player(self, player_id: str) -> Optional[Dict[str, Any]]:
        return self.players.get(player_id)

    def active_players(self, *, include_bots: bool = True) -> List[Dict[str, Any]]:
        """Joueurs non retirés, triés par siège."""
        players = [
            p for p in self.players.values()
            if p.get("status") == "ACTIVE" and (include_bots or not p.get("is_bot"))
        ]
        return sorted(players, key=lambda p: p["seat"])

    def player_by_seat(self, seat: int) -> Optional[Dict[str, Any]]:
        for player in self.players.values():
            if player.get("seat") == seat and player.get("status") == "ACTIVE":
                return player
        return None

    def player_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        for player in self.players.values():
            if token and player.get("player_token") == token:
                return player
        return None

    # -----------------------------
    # Tables
    # -----------------------------
    def rows(self, table: str, **where: Any) -> List[Dict[str, Any]]:
        return [row for row in self.tables[table] if _matches(row, where)]

    def first(self, table: str, **where: Any) -> Optional[Dict[str, Any]]:
        for row in self.tables[table]:
            if _matches(row, where):
                return row
        return None

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        entry = dict(row)
        entry.setdefault("id", uuid4().hex)
        entry.setdefault("created_at", time.time())
        self.tables[table].append(entry)
        return entry

    def delete_rows(self, table: str, **where: Any) -> int:
        kept = [row for row in self.tables[table] if not _matches(row, where)]
        removed = len(self.tables[table]) - len(kept)
        self.tables[table] = kept
        return removed

    # -----------------------------
    # Journaux
    # -----------------------------
    def append_log(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        target = self.mj_log if entry.get("audience") == "MJ" else self.public_log
        target.append(entry)
        return entry

    def logs(self, audience: str, since: Optional[float] = None) -> List[Dict[str, Any]]:
        source = self.mj_log if audience == "MJ" else self.public_log
        if since is None:
            return list(source)
        return [entry for entry in source if entry.get("ts", 0) > since]
