from __future__ import annotations

import logging
from typing import Any

from chat_engine.application.ports.metrics_exporter import MetricsExporterPort


class MockMetricsExporter(MetricsExporterPort):
    """Keeps exports in memory; used for local development and tests."""

    def __init__(self) -> None:
        self.exports: list[tuple[str, list[dict[str, Any]]]] = []
        self._logger = logging.getLogger(__name__)

    async def export(self, user_id: str, records: list[dict[str, Any]]) -> str | None:
        self.exports.append((user_id, list(records)))
        self._logger.info("Mock metrics export", extra={"user_id": user_id, "records": len(records)})
        return None
