"""Notification collaborators used to deliver scheduled report results."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivers a report result to a list of recipients."""

    @abstractmethod
    async def deliver(self, recipients: Sequence[str], report_result: Any) -> None:
        """Send ``report_result`` to every address in ``recipients``."""


class LogNotifier(Notifier):
    """Writes deliveries to the log and keeps them in ``deliveries``."""

    def __init__(self, keep: int = 100) -> None:
        self.keep = keep
        self.deliveries: list[dict[str, Any]] = []

    async def deliver(self, recipients: Sequence[str], report_result: Any) -> None:
        name = getattr(report_result, "report_name", "report")
        rows = len(getattr(report_result, "data", []) or [])
        logger.info(
            "Delivering %s (%d rows) to %s", name, rows, ", ".join(recipients)
        )
        self.deliveries.append({"recipients": list(recipients), "result": report_result})
        if len(self.deliveries) > self.keep:
            del self.deliveries[: len(self.deliveries) - self.keep]
