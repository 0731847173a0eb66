"""In-memory aggregation, reporting, dashboards and scheduled reports."""

__version__ = "1.0.0"
