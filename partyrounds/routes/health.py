"""
Module routes/health.py
Rôle:
- Endpoint de santé (service OK + abonnés WebSocket + webhook configuré).
"""
from fastapi import APIRouter

from partyrounds.config.settings import settings
from partyrounds.services.notifier import NOTIFIER
from partyrounds.services.ws_manager import WS

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health():
    """Renvoie un OK minimal avec le nom de service configuré."""
    return {
        "ok": True,
        "service": settings.APP_NAME,
        "ws": WS.stats(),
        "webhook": NOTIFIER.enabled,
    }
