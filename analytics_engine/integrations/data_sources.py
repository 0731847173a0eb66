"""Data collaborators exposing ``fetch_records(object_name)``."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import yaml

logger = logging.getLogger(__name__)


class DataSource(ABC):
    """Read-only access to every record of an object."""

    @abstractmethod
    async def fetch_records(self, object_name: str) -> list[dict[str, Any]]:
        """Return all records of ``object_name``."""


class InMemoryDataSource(DataSource):
    """Serves records from a mapping of object name to record list.

    Unknown objects yield an empty list.
    """

    def __init__(self, objects: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None):
        self._objects: dict[str, list[dict[str, Any]]] = {
            name: [dict(r) for r in records] for name, records in (objects or {}).items()
        }
        self.fetch_count = 0

    def set_records(self, object_name: str, records: Iterable[Mapping[str, Any]]) -> None:
        self._objects[object_name] = [dict(r) for r in records]

    async def fetch_records(self, object_name: str) -> list[dict[str, Any]]:
        self.fetch_count += 1
        return list(self._objects.get(object_name, []))


class JsonFileDataSource(DataSource):
    """Reads ``<object_name>.json`` (or ``.yaml``/``.yml``) from a directory.

    A file holds either a list of records or ``{"data": [...]}``.
    """

    SUFFIXES = (".json", ".yaml", ".yml")

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path_for(self, object_name: str) -> Path:
        if not object_name or "/" in object_name or "\\" in object_name or object_name.startswith("."):
            raise ValueError(f"Invalid object name: {object_name!r}")
        for suffix in self.SUFFIXES:
            candidate = self.directory / f"{object_name}{suffix}"
            if candidate.exists():
                return candidate
        raise FileNotFoundError(
            f"No data file for object {object_name!r} in {self.directory}"
        )

    def _read(self, object_name: str) -> list[dict[str, Any]]:
        path = self._path_for(object_name)
        with open(path, "r", encoding="utf-8") as fh:
            if path.suffix == ".json":
                payload = json.load(fh)
            else:
                payload = yaml.safe_load(fh)
        if isinstance(payload, dict):
            payload = payload.get("data", [])
        logger.debug("Loaded %d %s records from %s", len(payload or []), object_name, path)
        return payload or []

    async def fetch_records(self, object_name: str) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._read, object_name)
