"""Scheduled report configuration."""

from dataclasses import dataclass, field
from typing import Any, Optional

SCHEDULE_FORMATS = ("json", "csv", "pdf")


@dataclass
class ScheduledReport:
    """A report bound to a cron expression and a list of recipients.

    ``next_run`` and ``last_run`` are ISO-8601 UTC strings maintained by
    the scheduler.
    """

    id: str
    report_id: str
    cron: str
    recipients: list[str] = field(default_factory=list)
    format: str = "json"
    enabled: bool = True
    last_run: Optional[str] = None
    next_run: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ScheduledReport":
        if isinstance(raw, ScheduledReport):
            return raw
        recipients = raw.get("recipients")
        return cls(
            id=raw.get("id", ""),
            report_id=raw.get("reportId", raw.get("report_id", "")),
            cron=raw.get("cron", ""),
            recipients=list(recipients) if isinstance(recipients, (list, tuple)) else [],
            format=raw.get("format", "json"),
            enabled=raw.get("enabled", True) is not False,
            last_run=raw.get("lastRun", raw.get("last_run")),
            next_run=raw.get("nextRun", raw.get("next_run")) or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "reportId": self.report_id,
            "cron": self.cron,
            "recipients": list(self.recipients),
            "format": self.format,
            "enabled": self.enabled,
            "lastRun": self.last_run,
            "nextRun": self.next_run,
        }
