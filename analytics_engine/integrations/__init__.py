"""Collaborators the engine consumes: data sources and notifiers."""

from analytics_engine.integrations.data_sources import (
    DataSource,
    InMemoryDataSource,
    JsonFileDataSource,
)
from analytics_engine.integrations.notifiers import LogNotifier, Notifier

__all__ = [
    "DataSource",
    "InMemoryDataSource",
    "JsonFileDataSource",
    "LogNotifier",
    "Notifier",
]
