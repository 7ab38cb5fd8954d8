"""Process store: durable records of started processes, keyed by name.

Each start writes a ProcessRecord under the process name, so starting
"alpha" then "beta" leaves both discoverable, while restarting "alpha"
replaces its record.

JsonProcessStore re-reads the file before every write. Two supervisors in
the same host still race on it: the last concurrent writer wins.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from aoforge.project.config import AOConfig
from aoforge.types import ProcessName

_logger = logging.getLogger(__name__)


class ProcessRecord(BaseModel):
    """What survives the CLI invocation that started a process."""

    model_config = ConfigDict(populate_by_name=True)

    name: ProcessName
    pid: int = 0
    start_time: str = Field(alias="startTime")  # ISO-8601
    config: AOConfig = Field(default_factory=AOConfig)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class BaseProcessStore(ABC):
    """Keyed collection of ProcessRecords."""

    @abstractmethod
    def save(self, record: ProcessRecord) -> None:
        """Insert or replace the record for record.name."""
        ...

    @abstractmethod
    def get(self, name: ProcessName) -> ProcessRecord | None:
        ...

    @abstractmethod
    def list_records(self) -> list[ProcessRecord]:
        ...

    @abstractmethod
    def remove(self, name: ProcessName) -> bool:
        """Delete a record. Returns False if there was none."""
        ...


class MemoryProcessStore(BaseProcessStore):
    """Store that lives as long as the process that created it."""

    def __init__(self) -> None:
        self._records: dict[ProcessName, ProcessRecord] = {}

    def save(self, record: ProcessRecord) -> None:
        self._records[record.name] = record

    def get(self, name: ProcessName) -> ProcessRecord | None:
        return self._records.get(name)

    def list_records(self) -> list[ProcessRecord]:
        return list(self._records.values())

    def remove(self, name: ProcessName) -> bool:
        return self._records.pop(name, None) is not None


class JsonProcessStore(BaseProcessStore):
    """Records kept in one JSON object: {name: record}."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, record: ProcessRecord) -> None:
        records = self._read()
        records[record.name] = record
        self._write(records)

    def get(self, name: ProcessName) -> ProcessRecord | None:
        return self._read().get(name)

    def list_records(self) -> list[ProcessRecord]:
        return list(self._read().values())

    def remove(self, name: ProcessName) -> bool:
        records = self._read()
        if records.pop(name, None) is None:
            return False
        self._write(records)
        return True

    def _read(self) -> dict[ProcessName, ProcessRecord]:
        if not self._path.exists():
            return {}

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            _logger.warning("Ignoring unreadable process store %s: %s", self._path, e)
            return {}

        if not isinstance(data, dict):
            _logger.warning("Ignoring process store %s: expected a JSON object", self._path)
            return {}

        records: dict[ProcessName, ProcessRecord] = {}
        for name, raw in data.items():
            try:
                records[name] = ProcessRecord.model_validate(raw)
            except ValidationError as e:
                _logger.warning("Skipping invalid record %r in %s: %s", name, self._path, e)
        return records

    def _write(self, records: dict[ProcessName, ProcessRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {name: record.to_json() for name, record in records.items()}
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
