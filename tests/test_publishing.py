import asyncio

import anyio
import pytest

from partyrounds.services import notifier, ws_manager


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def slow_webhook(monkeypatch):
    """Webhook qui ne répond qu'une fois `release` positionné."""
    release = asyncio.Event()
    delivered = []

    async def slow_post(game_id, records):
        await release.wait()
        delivered.append((game_id, len(records)))
        return True

    monkeypatch.setattr(notifier.NOTIFIER, "url", "http://hooks.example.test/party")
    monkeypatch.setattr(notifier.NOTIFIER, "post_async", slow_post)
    return release, delivered


@pytest.mark.anyio
async def test_notify_from_a_worker_thread_does_not_wait_for_delivery(slow_webhook):
    release, delivered = slow_webhook
    before = set(ws_manager._BACKGROUND)

    with anyio.fail_after(2):
        await anyio.to_thread.run_sync(notifier.notify_safe, "g1", [{"kind": "ROUND_RESOLVED"}])

    assert delivered == []
    pending = ws_manager._BACKGROUND - before
    assert len(pending) == 1

    release.set()
    await pending.pop()
    await anyio.sleep(0)
    assert delivered == [("g1", 1)]
    assert not (ws_manager._BACKGROUND - before)


@pytest.mark.anyio
async def test_notify_on_the_event_loop_schedules_a_task(slow_webhook):
    release, delivered = slow_webhook
    before = set(ws_manager._BACKGROUND)

    notifier.notify_safe("g2", [{"kind": "A"}, {"kind": "B"}])

    pending = ws_manager._BACKGROUND - before
    assert len(pending) == 1 and delivered == []
    release.set()
    await pending.pop()
    assert delivered == [("g2", 2)]
