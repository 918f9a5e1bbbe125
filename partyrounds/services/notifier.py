"""
Service: notifier.py
- Publie les journaux d'une résolution vers un webhook externe (optionnel,
  `settings.NOTIFY_WEBHOOK_URL`).
- Session HTTP avec retries + backoff exponentiel.
- Fire-and-forget : un échec est journalisé, jamais remonté à la résolution.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

import anyio
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from partyrounds.config.settings import settings
from .ws_manager import fire_and_forget

logger = logging.getLogger(__name__)


class NotifierError(RuntimeError):
    """Échec de publication vers le webhook."""


class WebhookNotifier:
    def __init__(
        self,
        url: Optional[str],
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 3.0,
    ) -> None:
        self.url = url
        self.session = session or self._build_session()
        self.timeout = timeout

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=3,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"POST"}),
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def post(self, game_id: str, records: List[Dict[str, Any]]) -> None:
        request_id = uuid4().hex[:8]
        payload = {"game_id": game_id, "records": records}
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(
                "webhook publish failed",
                extra={"notify_url": self.url, "notify_request_id": request_id},
            )
            raise NotifierError("webhook publish failed") from exc
        logger.debug("webhook publish ok", extra={"notify_request_id": request_id})

    async def post_async(self, game_id: str, records: List[Dict[str, Any]]) -> bool:
        try:
            await anyio.to_thread.run_sync(self.post, game_id, records)
            return True
        except NotifierError:
            return False


NOTIFIER = WebhookNotifier(settings.NOTIFY_WEBHOOK_URL, timeout=settings.NOTIFY_TIMEOUT_S)


def notify_safe(game_id: str, records: List[Dict[str, Any]]) -> None:
    """Wrapper synchrone : publication en tâche de fond si un webhook est configuré."""
    if not records or not NOTIFIER.enabled:
        return
    fire_and_forget(NOTIFIER.post_async(game_id, records))
