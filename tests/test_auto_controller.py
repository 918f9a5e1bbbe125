import pytest

from partyrounds.engine.errors import PreconditionFailed
from partyrounds.services import auto_controller, submissions
from partyrounds.services.auto_controller import COUNTING_DOWN, DISABLED, IDLE, AutoController, majority


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms / 1000


@pytest.fixture
def auto_game(make_store):
    def _make(humans=("Alice", "Bob", "Chloé"), bots=1, **kwargs):
        store = make_store("FORET", humans=humans, bots=bots)
        with store.transaction():
            store.game["auto_mode"] = True
        clock = FakeClock()
        params = {"countdown_ms": 1000, "positions_wait_ms": 500, "poll_ms": 10, "max_failures": 3,
                  "max_backoff_ms": 40}
        params.update(kwargs)
        controller = AutoController(game_id=store.game_id, clock=clock, **params)
        controller.enable()
        return store, controller, clock

    return _make


def _bet(store, name, amount=5):
    player = next(p for p in store.active_players() if p["display_name"] == name)
    with store.transaction():
        submissions.record(store, "bet", player, {"amount": amount})


def test_majority_of_humans():
    assert [majority(n) for n in (1, 2, 3, 4, 5)] == [1, 1, 2, 2, 3]


@pytest.mark.anyio
async def test_countdown_starts_at_majority_and_resolves_on_expiry(auto_game):
    store, controller, clock = auto_game()

    assert await controller.tick() is None
    assert controller.state == IDLE

    _bet(store, "Alice")
    _bet(store, "Bob")
    assert await controller.tick() is None
    assert controller.state == COUNTING_DOWN
    assert controller.status()["countdown_remaining_ms"] == 1000

    clock.advance(500)
    assert await controller.tick() is None

    clock.advance(600)
    done = await controller.tick()
    assert done["step"] == "close-bets"
    assert controller.state == IDLE
    assert store.game["phase"] == "PHASE2_POSITIONS"

    frozen = submissions.latest(store, "bet")
    chloe = next(p for p in store.active_players() if p["display_name"] == "Chloé")
    assert frozen[chloe["player_id"]]["source"] == submissions.SOURCE_AUTO
    assert frozen[chloe["player_id"]]["amount"] == 5


@pytest.mark.anyio
async def test_full_submission_skips_the_countdown(auto_game):
    store, controller, _ = auto_game(humans=("Alice", "Bob"))
    _bet(store, "Alice")
    _bet(store, "Bob")
    done = await controller.tick()
    assert done["step"] == "close-bets"


@pytest.mark.anyio
async def test_positions_then_combat_then_shop(auto_game):
    store, controller, clock = auto_game(humans=("Alice",))
    _bet(store, "Alice")
    assert (await controller.tick())["step"] == "close-bets"

    alice = store.active_players()[0]
    with store.transaction():
        submissions.record(store, "action", alice, {"desired_position": 1, "attack_slot": 1})
    assert (await controller.tick())["step"] == "publish-positions"
    assert store.game["phase_locked"]

    assert await controller.tick() is None
    clock.advance(600)
    assert (await controller.tick())["step"] == "resolve-combat"
    assert store.game["phase"] == "PHASE3_SHOP"
    assert (await controller.tick())["step"] == "generate-shop"


@pytest.mark.anyio
async def test_failures_back_off_then_disable(auto_game, monkeypatch):
    store, controller, clock = auto_game(humans=("Alice",), max_failures=2)

    def broken(*args, **kwargs):
        raise PreconditionFailed("boom")

    monkeypatch.setattr(auto_controller, "run_step", broken)
    _bet(store, "Alice")

    assert await controller.tick() is None
    assert controller.failures == 1
    assert controller.retry_at == pytest.approx(clock.now + 0.010)

    # pendant le backoff, rien n'est tenté
    assert await controller.tick() is None
    assert controller.failures == 1

    clock.advance(20)
    assert await controller.tick() is None
    assert controller.state == DISABLED
    assert store.game["auto_mode"] is False
    assert "boom" in controller.last_error


@pytest.mark.anyio
async def test_unexpected_errors_count_as_failures(auto_game, monkeypatch, caplog):
    store, controller, clock = auto_game(humans=("Alice",), max_failures=2)

    def crashing(*args, **kwargs):
        raise OSError("disque plein")

    monkeypatch.setattr(auto_controller, "run_step", crashing)
    _bet(store, "Alice")

    with caplog.at_level("ERROR", logger="partyrounds.services.auto_controller"):
        assert await controller.tick() is None
    assert controller.failures == 1 and controller.state == IDLE
    assert controller.in_flight is False
    assert controller.retry_at == pytest.approx(clock.now + 0.010)
    assert controller.last_error == "disque plein"
    assert any(record.exc_info for record in caplog.records)

    clock.advance(20)
    assert await controller.tick() is None
    assert controller.state == DISABLED
    assert store.game["auto_mode"] is False


@pytest.mark.anyio
async def test_run_loop_survives_a_crashing_tick(auto_game, monkeypatch):
    _, controller, _ = auto_game(max_failures=2)
    calls = []

    async def crashing_tick():
        calls.append(1)
        raise RuntimeError("tick cassé")

    monkeypatch.setattr(controller, "tick", crashing_tick)
    await controller.run()
    assert len(calls) == 2
    assert controller.state == DISABLED
    assert controller.last_error == "tick cassé"

def test_backoff_is_capped(auto_game):
    _, controller, _ = auto_game(poll_ms=10, max_backoff_ms=40)
    delays = []
    for failures in range(1, 6):
        controller.failures = failures
        delays.append(controller._backoff_ms())
    assert delays == [10, 20, 40, 40, 40]


def test_stale_generation_is_ignored(auto_game):
    store, controller, _ = auto_game()
    stale = controller.generation
    controller.disable()
    controller.enable()
    assert controller._resolve("close-bets", stale) == {"skipped": True}
    assert store.game["phase"] == "PHASE1_MISES"


@pytest.mark.anyio
async def test_controller_disables_itself_when_auto_mode_is_off(auto_game):
    store, controller, _ = auto_game()
    with store.transaction():
        store.game["auto_mode"] = False
    assert await controller.tick() is None
    assert controller.state == DISABLED
