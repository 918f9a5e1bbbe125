"""
Service: auto_controller.py
Mode auto de la Forêt : une machine à états par partie.

    IDLE --(majorité des humains a soumis)--> COUNTING_DOWN
    COUNTING_DOWN --(compte à rebours écoulé ou 100% soumis)--> RESOLVING
    RESOLVING --(succès)--> IDLE
    * --(désactivation, ou trop d'échecs consécutifs)--> DISABLED

- Le compteur de génération change à chaque (dés)activation : une
  continuation planifiée avant ce changement est ignorée.
- Garde « in flight » : jamais deux résolutions simultanées pour une partie.
- Échecs : backoff min(AUTO_MAX_BACKOFF_MS, AUTO_POLL_MS * 2^n), puis
  DISABLED après AUTO_MAX_FAILURES échecs consécutifs.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from threading import RLock
from typing import Callable, Dict, Optional, Tuple

import anyio

from partyrounds.config.settings import settings
from partyrounds.engine.errors import ResolutionError
from partyrounds.engine.resolvers import run_step
from . import bots, submissions
from .game_store import GameStore
from .store_registry import get_store

logger = logging.getLogger(__name__)

IDLE = "IDLE"
COUNTING_DOWN = "COUNTING_DOWN"
RESOLVING = "RESOLVING"
DISABLED = "DISABLED"

# phase -> (catégorie de soumission, étape de résolution)
SUBMISSION_STEPS: Dict[str, Tuple[str, str]] = {
    "PHASE1_MISES": ("bet", "close-bets"),
    "PHASE2_POSITIONS": ("action", "publish-positions"),
    "PHASE3_SHOP": ("shop", "resolve-shop"),
}


def humans_progress(store: GameStore, category: str) -> Tuple[int, int]:
    """(humains ayant soumis, humains actifs)"""
    humans = store.active_players(include_bots=False)
    done = sum(1 for p in humans if submissions.has_submission(store, category, p["player_id"]))
    return done, len(humans)


def majority(humans: int) -> int:
    return math.ceil(humans / 2)


@dataclass
class AutoController:
    game_id: str
    countdown_ms: int = settings.AUTO_COUNTDOWN_MS
    positions_wait_ms: int = settings.AUTO_POSITIONS_WAIT_MS
    poll_ms: int = settings.AUTO_POLL_MS
    max_failures: int = settings.AUTO_MAX_FAILURES
    max_backoff_ms: int = settings.AUTO_MAX_BACKOFF_MS
    clock: Callable[[], float] = time.monotonic
    state: str = IDLE
    generation: int = 0
    deadline: Optional[float] = None
    failures: int = 0
    retry_at: Optional[float] = None
    positions_seen_at: Optional[float] = None
    in_flight: bool = False
    last_error: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    # ---------- pilotage ----------
    def enable(self) -> None:
        self.generation += 1
        self.state = IDLE
        self.deadline = None
        self.failures = 0
        self.retry_at = None
        self.last_error = None

    def disable(self, reason: str = "manual") -> None:
        self.generation += 1
        self.state = DISABLED
        self.deadline = None
        if self.task is not None and not self.task.done():
            self.task.cancel()
        self.task = None
        logger.info("auto mode disabled for %s (%s)", self.game_id, reason)

    def status(self) -> dict:
        remaining = None
        if self.state == COUNTING_DOWN and self.deadline is not None:
            remaining = max(0, int((self.deadline - self.clock()) * 1000))
        return {
            "game_id": self.game_id,
            "state": self.state,
            "generation": self.generation,
            "countdown_remaining_ms": remaining,
            "failures": self.failures,
            "in_flight": self.in_flight,
            "last_error": self.last_error,
        }

    # ---------- boucle ----------
    async def run(self) -> None:
        generation = self.generation
        while self.state != DISABLED and generation == self.generation:
            try:
                await self.tick()
            except ResolutionError as exc:
                self.last_error = exc.message
                self.disable("game unavailable")
                return
            except Exception as exc:
                logger.exception("auto %s: tick failed", self.game_id)
                self.failures += 1
                self.last_error = str(exc) or type(exc).__name__
                if self.failures >= self.max_failures:
                    self.disable("too many failures")
                    return
            await asyncio.sleep(self.poll_ms / 1000)

    def _backoff_ms(self) -> int:
        return min(self.max_backoff_ms, self.poll_ms * (2 ** max(0, self.failures - 1)))

    def _next_step(self, store: GameStore, now: float) -> Optional[str]:
        """Étape à lancer maintenant (ou None), en mettant à jour l'état du compte à rebours."""
        game = store.game
        phase = game.get("phase")
        if phase == "PHASE2_POSITIONS" and game.get("phase_locked"):
            if not store.rows("positions", round=game["round"]):
                return "publish-positions"
            if self.positions_seen_at is None:
                self.positions_seen_at = now
            if (now - self.positions_seen_at) * 1000 >= self.positions_wait_ms:
                return "resolve-combat"
            return None
        self.positions_seen_at = None
        if phase == "PHASE3_SHOP" and not store.first("shop_offers", round=game["round"]):
            return "generate-shop"
        if phase not in SUBMISSION_STEPS or game.get("phase_locked"):
            return None

        category, step = SUBMISSION_STEPS[phase]
        done, humans = humans_progress(store, category)
        if humans and done >= humans:
            return step
        if self.state == IDLE and (humans == 0 or done >= majority(humans)):
            self.state = COUNTING_DOWN
            self.deadline = now + self.countdown_ms / 1000
            logger.info("auto %s: countdown started (%d/%d)", self.game_id, done, humans)
        if self.state == COUNTING_DOWN and self.deadline is not None and now >= self.deadline:
            return step
        return None

    def _resolve(self, step: str, generation: int) -> dict:
        store = get_store(self.game_id)
        if generation != self.generation or self.state == DISABLED:
            return {"skipped": True}
        if step in ("close-bets", "publish-positions", "resolve-shop"):
            with store.transaction():
                bots.synthesize_foret(store, bots.make_rng(), include_humans=True)
        return run_step(store, step)

    def _failed(self, store: GameStore, generation: int, now: float, error: str) -> None:
        self.failures += 1
        self.last_error = error
        if self.failures >= self.max_failures:
            self.disable("too many failures")
            with store.transaction():
                store.game["auto_mode"] = False
            return
        self.retry_at = now + self._backoff_ms() / 1000
        if generation == self.generation:
            self.state = IDLE

    async def tick(self) -> Optional[dict]:
        generation = self.generation
        if self.state == DISABLED or self.in_flight:
            return None
        now = self.clock()
        if self.retry_at is not None and now < self.retry_at:
            return None

        store = get_store(self.game_id)
        game = store.game
        if game.get("status") != "IN_GAME" or game.get("game_type") != "FORET" or not game.get("auto_mode"):
            self.disable("game not eligible")
            return None

        step = self._next_step(store, now)
        if step is None:
            return None

        self.state = RESOLVING
        self.in_flight = True
        try:
            result = await anyio.to_thread.run_sync(self._resolve, step, generation)
        except ResolutionError as exc:
            logger.warning("auto %s: %s failed (%d): %s", self.game_id, step, self.failures + 1, exc.message)
            self._failed(store, generation, now, f"{exc.message} ({exc.error_id})")
            return None
        except Exception as exc:
            logger.exception("auto %s: %s crashed (%d)", self.game_id, step, self.failures + 1)
            self._failed(store, generation, now, str(exc) or type(exc).__name__)
            return None
        finally:
            self.in_flight = False
        if generation != self.generation:
            return None
        self.failures = 0
        self.retry_at = None
        self.deadline = None
        self.state = IDLE
        return {"step": step, "result": result}


_CONTROLLERS: Dict[str, AutoController] = {}
_LOCK = RLock()


def get_controller(game_id: str) -> AutoController:
    with _LOCK:
        controller = _CONTROLLERS.get(game_id)
        if controller is None:
            controller = AutoController(game_id=game_id, state=DISABLED)
            _CONTROLLERS[game_id] = controller
        return controller


def start(game_id: str) -> AutoController:
    """Active le mode auto et lance la boucle sur la boucle asyncio courante."""
    controller = get_controller(game_id)
    controller.disable("restart")
    controller.enable()
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop is not None:
        controller.task = loop.create_task(controller.run())
    return controller


def stop(game_id: str) -> AutoController:
    controller = get_controller(game_id)
    controller.disable()
    return controller
