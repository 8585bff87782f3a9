"""
Storyweaver Record Store

Key-value persistence for task, storyboard and character records. Records are
plain JSON-serialisable dicts keyed by their "id" field.

Two implementations:
- InMemoryRecordStore: process-local, used by tests and the CLI dry runs
- JsonRecordStore: one JSON file per record under a collection directory
"""

import copy
import json
import os
from urllib.parse import quote
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from storyweaver.core.exceptions import StorageError
from storyweaver.core.logging_config import get_logger

logger = get_logger("storage.record_store")

Record = Dict[str, Any]

TASKS = "tasks"
STORYBOARDS = "storyboards"
CHARACTERS = "characters"


class RecordStore(ABC):
    """One collection of records."""

    def __init__(self, collection: str):
        self.collection = collection

    @abstractmethod
    async def get(self, record_id: str) -> Optional[Record]:
        """Return a copy of the record, or None."""

    @abstractmethod
    async def get_all(self) -> List[Record]:
        """Return copies of every record in the collection."""

    @abstractmethod
    async def put(self, record: Record) -> None:
        """Insert or replace a record by its id."""

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Remove a record; missing ids are ignored."""

    @staticmethod
    def _record_id(record: Record) -> str:
        record_id = record.get("id")
        if not record_id:
            raise StorageError("Record has no id", {"record": record})
        return str(record_id)


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed store. Records are copied in and out."""

    def __init__(self, collection: str):
        super().__init__(collection)
        self._records: Dict[str, Record] = {}

    async def get(self, record_id: str) -> Optional[Record]:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def get_all(self) -> List[Record]:
        return [copy.deepcopy(record) for record in self._records.values()]

    async def put(self, record: Record) -> None:
        self._records[self._record_id(record)] = copy.deepcopy(record)

    async def delete(self, record_id: str) -> None:
        self._records.pop(record_id, None)

    def __len__(self) -> int:
        return len(self._records)


class JsonRecordStore(RecordStore):
    """
    Directory-backed store: <root>/<collection>/<encoded id>.json.

    Writes go to a temporary file first and are moved into place, so a crash
    mid-write never leaves a truncated record behind.
    """

    def __init__(self, root: Path, collection: str):
        super().__init__(collection)
        self.directory = Path(root) / collection
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, record_id: str) -> Path:
        if not record_id:
            raise StorageError("Invalid record id: ''")
        # Percent-encoded, dots included, so distinct ids never share a file
        safe_id = quote(record_id, safe="").replace(".", "%2E")
        return self.directory / f"{safe_id}.json"

    def _read(self, path: Path) -> Optional[Record]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt record {path.name} in {self.collection}: {e}")
            raise StorageError(f"Corrupt record file: {path}", {"error": str(e)})

    async def get(self, record_id: str) -> Optional[Record]:
        return self._read(self._path(record_id))

    async def get_all(self) -> List[Record]:
        records = []
        for path in sorted(self.directory.glob("*.json")):
            record = self._read(path)
            if record is not None:
                records.append(record)
        return records

    async def put(self, record: Record) -> None:
        path = self._path(self._record_id(record))
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(record, f, ensure_ascii=False)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {self.collection} record", {"error": str(e)})

    async def delete(self, record_id: str) -> None:
        self._path(record_id).unlink(missing_ok=True)


@dataclass
class RecordStores:
    """The collections the studio persists."""
    tasks: RecordStore
    storyboards: RecordStore
    characters: RecordStore

    @classmethod
    def in_memory(cls) -> 'RecordStores':
        return cls(
            tasks=InMemoryRecordStore(TASKS),
            storyboards=InMemoryRecordStore(STORYBOARDS),
            characters=InMemoryRecordStore(CHARACTERS),
        )

    @classmethod
    def on_disk(cls, data_dir: Path) -> 'RecordStores':
        logger.info(f"Opening record store at {data_dir}")
        return cls(
            tasks=JsonRecordStore(data_dir, TASKS),
            storyboards=JsonRecordStore(data_dir, STORYBOARDS),
            characters=JsonRecordStore(data_dir, CHARACTERS),
        )
