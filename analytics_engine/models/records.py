"""SQLAlchemy tables holding serialized registry entries."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from analytics_engine.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportRecord(Base):
    """Persisted report definition."""

    __tablename__ = "analytics_reports"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    object_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<ReportRecord id={self.id!r} object={self.object_name!r}>"


class DashboardRecord(Base):
    """Persisted dashboard, widgets included."""

    __tablename__ = "analytics_dashboards"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    owner: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    shared: Mapped[bool] = mapped_column(Boolean, default=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<DashboardRecord id={self.id!r} owner={self.owner!r}>"


class ScheduleRecord(Base):
    """Persisted scheduled report with its run bookkeeping."""

    __tablename__ = "analytics_schedules"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    report_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    next_run: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<ScheduleRecord id={self.id!r} report={self.report_id!r}>"
