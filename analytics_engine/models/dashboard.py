"""Dashboard and widget definitions."""

from dataclasses import dataclass, field
from typing import Any, Optional

from analytics_engine.models.pipeline import Pipeline
from analytics_engine.utils.timeutils import isoformat, utcnow

WIDGET_TYPES = (
    "metric",
    "bar_chart",
    "line_chart",
    "pie_chart",
    "table",
    "list",
    "area_chart",
    "scatter_chart",
)


@dataclass(frozen=True)
class WidgetSize:
    w: int = 4
    h: int = 3


@dataclass(frozen=True)
class WidgetPosition:
    x: int = 0
    y: int = 0


@dataclass(frozen=True)
class DashboardLayout:
    columns: int = 12
    row_height: int = 80

    @classmethod
    def from_dict(cls, raw: Optional[dict[str, Any]]) -> "DashboardLayout":
        if isinstance(raw, DashboardLayout):
            return raw
        raw = raw or {}
        return cls(
            columns=int(raw.get("columns", 12)),
            row_height=int(raw.get("rowHeight", raw.get("row_height", 80))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"columns": self.columns, "rowHeight": self.row_height}


@dataclass
class Widget:
    """A dashboard panel backed by either an inline pipeline or a report."""

    id: str
    type: str
    title: str
    pipeline: Optional[Pipeline] = None
    report_id: Optional[str] = None
    size: WidgetSize = field(default_factory=WidgetSize)
    position: WidgetPosition = field(default_factory=WidgetPosition)
    refresh_interval: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Widget":
        if isinstance(raw, Widget):
            return raw
        pipeline = raw.get("pipeline")
        size = raw.get("size") or {}
        position = raw.get("position") or {}
        return cls(
            id=raw.get("id", ""),
            type=raw.get("type", "table"),
            title=raw.get("title", ""),
            pipeline=Pipeline.from_dict(pipeline) if pipeline is not None else None,
            report_id=raw.get("reportId", raw.get("report_id")),
            size=WidgetSize(w=int(size.get("w", 4)), h=int(size.get("h", 3))),
            position=WidgetPosition(
                x=int(position.get("x", 0)), y=int(position.get("y", 0))
            ),
            refresh_interval=int(
                raw.get("refreshInterval", raw.get("refresh_interval", 0))
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "size": {"w": self.size.w, "h": self.size.h},
            "position": {"x": self.position.x, "y": self.position.y},
        }
        if self.pipeline is not None:
            out["pipeline"] = self.pipeline.to_dict()
        if self.report_id is not None:
            out["reportId"] = self.report_id
        if self.refresh_interval:
            out["refreshInterval"] = self.refresh_interval
        return out


@dataclass
class Dashboard:
    """A named collection of widgets laid out on a grid."""

    id: str
    name: str
    owner: str = ""
    widgets: list[Widget] = field(default_factory=list)
    layout: DashboardLayout = field(default_factory=DashboardLayout)
    shared: bool = False
    description: Optional[str] = None
    created_at: str = field(default_factory=lambda: isoformat(utcnow()))

    def find_widget(self, widget_id: str) -> Optional[Widget]:
        for widget in self.widgets:
            if widget.id == widget_id:
                return widget
        return None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Dashboard":
        dashboard = cls(
            id=raw.get("id", ""),
            name=raw.get("name", ""),
            owner=raw.get("owner", ""),
            widgets=[Widget.from_dict(w) for w in raw.get("widgets") or []],
            layout=DashboardLayout.from_dict(raw.get("layout")),
            shared=bool(raw.get("shared", False)),
            description=raw.get("description"),
        )
        created_at = raw.get("createdAt") or raw.get("created_at")
        if created_at:
            dashboard.created_at = created_at
        return dashboard

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "owner": self.owner,
            "widgets": [w.to_dict() for w in self.widgets],
            "layout": self.layout.to_dict(),
            "shared": self.shared,
            "createdAt": self.created_at,
        }
        if self.description is not None:
            out["description"] = self.description
        return out
