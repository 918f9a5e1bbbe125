"""
Configuration de l'application (Settings)
=========================================

Rôle
----
- Centraliser les paramètres du service (nom, host/port, jeton admin, chemins,
  cadence du mode auto, retries de setup).
- Défauts pensés pour un poste de développement ; surcharge par `.env`
  ou par variables d'environnement.

Intégrations
------------
- Chargement assuré par `pydantic-settings` (environnement puis `.env`).
- Les services/routers importent `from partyrounds.config.settings import settings`.

Exemples de `.env`
------------------
APP_NAME="PartyRounds Backend (Staging)"
PORT=8080
ADMIN_TOKEN="mettre-une-valeur-secrète-en-prod"
DATA_DIR="/var/opt/partyrounds/data"
AUTO_COUNTDOWN_MS=20000
NOTIFY_WEBHOOK_URL="http://localhost:9000/hooks/partyrounds"
"""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    # Nom du service (apparaît dans /health)
    APP_NAME: str = "PartyRounds Backend"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Jeton admin (rôle "admin" : tous les droits MJ sur toutes les parties)
    # ⚠️ Remplacez en production via .env
    ADMIN_TOKEN: str = "changeme-super-secret"

    # Répertoire des fichiers persistés (parties, identités, catalogues)
    # Par défaut: <repo>/partyrounds/data
    DATA_DIR: str = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")

    # Publication externe des journaux (optionnelle, fire-and-forget)
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    NOTIFY_TIMEOUT_S: float = 3.0

    # Mode auto (Forêt)
    AUTO_COUNTDOWN_MS: int = 30000
    AUTO_POSITIONS_WAIT_MS: int = 15000
    AUTO_POLL_MS: int = 1000
    AUTO_MAX_FAILURES: int = 5
    AUTO_MAX_BACKOFF_MS: int = 20000

    # Setup de partie (opérations idempotentes, rejouées en cas d'erreur IO)
    SETUP_RETRY_ATTEMPTS: int = 3
    SETUP_RETRY_BACKOFF: float = 0.2

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Instance unique importable partout : `settings`
settings = Settings()
