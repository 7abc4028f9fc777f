from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class MetricsExporterPort(ABC):
    @abstractmethod
    async def export(self, user_id: str, records: list[dict[str, Any]]) -> str | None:
        """
        Ship metric records to the export destination.
        Returns a download location when the destination provides one.
        """
        raise NotImplementedError
