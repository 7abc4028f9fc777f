from __future__ import annotations

import logging
from typing import Any

import httpx

from chat_engine.application.exceptions import ExportError
from chat_engine.application.ports.metrics_exporter import MetricsExporterPort
from chat_engine.core.config import settings


class HttpMetricsExporter(MetricsExporterPort):
    def __init__(
        self,
        endpoint: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint or settings.EXPORT_ENDPOINT
        self._api_key = api_key or settings.EXPORT_API_KEY
        self._timeout = timeout or settings.EXPORT_TIMEOUT_SECONDS
        self._transport = transport
        self._logger = logging.getLogger(__name__)

        if not self._endpoint:
            raise ValueError("EXPORT_ENDPOINT is required for the HTTP metrics exporter")

    async def export(self, user_id: str, records: list[dict[str, Any]]) -> str | None:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {"user_id": user_id, "metrics": records}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._endpoint, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            self._logger.error("Metrics export failed", extra={"user_id": user_id, "error": str(e)})
            raise ExportError("Metrics export failed") from e

        body = response.json() if response.content else {}
        return body.get("download_url") if isinstance(body, dict) else None
