import os
import tempfile

# Répertoire de données isolé : à positionner AVANT tout import de partyrounds
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="partyrounds-tests-")
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ.pop("NOTIFY_WEBHOOK_URL", None)

import pytest
from fastapi.testclient import TestClient

from partyrounds.engine import setup
from partyrounds.main import app
from partyrounds.models.game import GameCreate
from partyrounds.services.store_registry import drop_store

ADMIN_HEADERS = {"Authorization": "Bearer test-admin-token"}
HOST = {"user_id": "host-1", "display_name": "Hôte", "roles": []}


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def make_store():
    """Partie démarrée directement via le moteur : humains puis bots."""
    created = []

    def _make(game_type, humans=("Alice", "Bob", "Chloé"), bots=0, config=None, bot_config=None, seed=1):
        store = setup.create_game(
            GameCreate(name=f"test {game_type}", gameType=game_type, config=config or {},
                       botConfig=bot_config or {}),
            HOST,
        )
        created.append(store.game_id)
        for name in humans:
            setup.join_game(store, name)
        if bots:
            setup.add_bots(store, bots)
        setup.start_game(store, seed)
        return store

    yield _make
    for game_id in created:
        drop_store(game_id, delete_files=True)


@pytest.fixture
def api_game(client, admin_headers):
    """Partie créée et démarrée via l'API ; renvoie (game_id, {nom: playerToken})."""
    def _make(game_type, names=("Alice", "Bob", "Chloé"), config=None, seed=7):
        created = client.post("/games", json={"name": "api", "gameType": game_type, "config": config or {}},
                              headers=admin_headers)
        assert created.status_code == 200, created.text
        game_id = created.json()["game"]["game_id"]
        tokens = {}
        for name in names:
            joined = client.post("/games/join", json={"gameId": game_id, "displayName": name})
            assert joined.status_code == 200, joined.text
            tokens[name] = joined.json()["playerToken"]
        started = client.post("/games/start", json={"gameId": game_id, "seed": seed}, headers=admin_headers)
        assert started.status_code == 200, started.text
        return game_id, tokens

    return _make
