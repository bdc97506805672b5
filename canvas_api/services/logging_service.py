"""
Logging setup and central log shipping

Local logs go through the stdlib logging tree. Audit events (auth results,
origin-guard and rate-limit denials) can additionally be shipped to a
central backend over HTTP.

Backends (LOGGING_BACKEND):
- none (default): audit events only reach the local logger
- elasticsearch: one document per event in a daily index
- loki: Loki push API
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import httpx

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the process"""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs every request at INFO, which includes provider URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)


class CentralLoggingService:
    """Ships structured events to the configured central backend"""

    def __init__(self, settings: Settings):
        self.backend = settings.LOGGING_BACKEND.lower()
        self.service = "canvas-api"
        self.environment = settings.ENVIRONMENT
        self._es_url = settings.ELASTICSEARCH_URL.rstrip("/")
        self._es_index = settings.ELASTICSEARCH_INDEX
        self._loki_url = settings.LOKI_URL.rstrip("/") + "/loki/api/v1/push"
        self._http_client: Optional[httpx.AsyncClient] = None
        self._pending: Set[asyncio.Task] = set()

        if self.backend != "none":
            logger.info(f"Central logging enabled: {self.backend}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=5.0)
        return self._http_client

    async def log(
        self,
        level: str,
        message: str,
        *,
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        """
        Send one event to the central backend

        Shipping failures are logged locally and never reach the caller's
        request.
        """
        if self.backend == "none":
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "message": message,
            "service": self.service,
            "environment": self.environment,
            "action": action,
            "user_id": user_id,
            **(extra or {}),
        }

        try:
            if self.backend == "elasticsearch":
                await self._send_to_elasticsearch(entry)
            elif self.backend == "loki":
                await self._send_to_loki(entry)
            else:
                logger.warning(f"Unknown LOGGING_BACKEND: {self.backend}")
        except Exception as e:
            logger.error(f"Failed to send log to {self.backend}: {e}")

    async def _send_to_elasticsearch(self, entry: Dict[str, Any]):
        client = self._get_client()
        date_suffix = datetime.now(timezone.utc).strftime("%Y.%m.%d")
        response = await client.post(
            f"{self._es_url}/{self._es_index}-{date_suffix}/_doc",
            json=entry,
        )
        if response.status_code not in (200, 201):
            logger.warning(f"Elasticsearch response: {response.status_code}")

    async def _send_to_loki(self, entry: Dict[str, Any]):
        client = self._get_client()
        labels = {
            "service": self.service,
            "level": entry["level"],
            "environment": self.environment,
        }
        ts = int(datetime.now(timezone.utc).timestamp() * 1e9)
        payload = {
            "streams": [
                {"stream": labels, "values": [[str(ts), json.dumps(entry, default=str)]]}
            ]
        }
        response = await client.post(self._loki_url, json=payload)
        if response.status_code not in (200, 204):
            logger.warning(f"Loki response: {response.status_code}")

    async def audit(
        self,
        action: str,
        *,
        user_id: Optional[str] = None,
        client_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Security-relevant event (login, register, blocked request)

        Called on the request path, so shipping runs as a background task
        and the caller does not wait for the backend.
        """
        logger.info(f"audit action={action} user={user_id or '-'} client={client_id or '-'}")
        if self.backend == "none":
            return
        self._ship_in_background(self.log(
            level="audit",
            message=f"Audit: {action}",
            action=action,
            user_id=user_id,
            extra={"client_id": client_id, "details": details, "audit": True},
        ))

    def _ship_in_background(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self):
        """Wait for events still being shipped"""
        if self._pending:
            await asyncio.gather(*self._pending)

    async def close(self):
        await self.flush()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


central_logging = CentralLoggingService(get_settings())


async def shutdown_logging():
    """Close the shipping client on application shutdown"""
    await central_logging.close()
