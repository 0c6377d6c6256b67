"""Record stores used by the persistence committer.

Records are plain JSON objects addressed by (table, record id). Every write is
conditional on the record id and, when given, the owner id stored in the
record's ``user_id`` field; a record owned by someone else is reported as not
found.

The file store keeps one JSON file per record so concurrent requests for
different records never touch the same file. Concurrent writers to the same
record are detected from the file's modification time and resolved by
re-reading and re-applying the change once.
"""

import asyncio
import copy
import json
import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from moodlog.services.exceptions import RecordModifiedError, RecordNotFoundError, StorageError
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)

Record = Dict[str, Any]
RecordMutator = Callable[[Record], Record]

OWNER_FIELD = "user_id"

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*$")


def _serialize(record: Record, path: Path) -> str:
    # Stored records stay strict JSON: no NaN or Infinity
    try:
        return json.dumps(record, ensure_ascii=False, indent=2, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Record for {path} is not serializable as JSON: {e}") from e


def _owned_by(record: Record, owner_id: Optional[str]) -> bool:
    return owner_id is None or record.get(OWNER_FIELD) == owner_id


def _merge_fields(fields: Record) -> RecordMutator:
    def mutate(record: Record) -> Record:
        record.update(fields)
        return record
    return mutate


class EntryStore(ABC):
    """Abstract async record store."""

    @abstractmethod
    async def get_record(
        self, table: str, record_id: str, owner_id: Optional[str] = None
    ) -> Record:
        """
        Fetch a copy of one record.

        Raises:
            RecordNotFoundError: If missing or owned by someone else
        """
        pass

    @abstractmethod
    async def modify_record(
        self,
        table: str,
        record_id: str,
        mutate: RecordMutator,
        owner_id: Optional[str] = None,
    ) -> Tuple[Record, bool]:
        """
        Read-modify-write one record.

        ``mutate`` receives a private copy of the stored record and returns
        the new record. Nothing is written when the result equals the stored
        record.

        Returns:
            Tuple of (stored record, whether a write happened)

        Raises:
            RecordNotFoundError: If missing or owned by someone else
            StorageError: On write failure
        """
        pass

    @abstractmethod
    async def put_record(self, table: str, record_id: str, record: Record) -> None:
        """Create or replace a record unconditionally."""
        pass

    async def update_record(
        self,
        table: str,
        record_id: str,
        fields: Record,
        owner_id: Optional[str] = None,
    ) -> Record:
        """Merge top-level fields into a record and return the stored record."""
        record, _ = await self.modify_record(
            table, record_id, _merge_fields(fields), owner_id=owner_id
        )
        return record


class InMemoryEntryStore(EntryStore):
    """Dict-backed store for tests and the demo server."""

    def __init__(self, tables: Optional[Dict[str, Dict[str, Record]]] = None):
        self._tables: Dict[str, Dict[str, Record]] = copy.deepcopy(tables) if tables else {}
        self.write_count = 0

    def _lookup(self, table: str, record_id: str, owner_id: Optional[str]) -> Record:
        record = self._tables.get(table, {}).get(record_id)
        if record is None or not _owned_by(record, owner_id):
            raise RecordNotFoundError(table, record_id)
        return record

    async def get_record(self, table, record_id, owner_id=None):
        return copy.deepcopy(self._lookup(table, record_id, owner_id))

    async def modify_record(self, table, record_id, mutate, owner_id=None):
        current = self._lookup(table, record_id, owner_id)
        updated = mutate(copy.deepcopy(current))
        if updated == current:
            return copy.deepcopy(current), False

        self._tables[table][record_id] = copy.deepcopy(updated)
        self.write_count += 1
        return copy.deepcopy(updated), True

    async def put_record(self, table, record_id, record):
        self._tables.setdefault(table, {})[record_id] = copy.deepcopy(record)


def atomic_write(path: Path, content: str, expected_mtime_ns: Optional[int] = None) -> None:
    """
    Atomically write content to file with temp-file-rename pattern.

    1. Early modification check (before write)
    2. Write to temporary file and fsync
    3. Late modification check (after write, before rename)
    4. Atomic rename to replace original file

    Args:
        path: Target file path
        content: Content to write
        expected_mtime_ns: Modification time observed when the record was read,
            or None to skip concurrent modification detection

    Raises:
        RecordModifiedError: If file was modified since it was read
        OSError: On file I/O errors
    """
    if expected_mtime_ns is not None and _mtime_ns(path) != expected_mtime_ns:
        raise RecordModifiedError(str(path), "Record was modified before write (early check)")

    # Same directory so the rename stays on one filesystem
    temp_path = path.parent / f".{path.name}.tmp.{os.getpid()}.{threading.get_ident()}"

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if expected_mtime_ns is not None and _mtime_ns(path) != expected_mtime_ns:
            raise RecordModifiedError(str(path), "Record was modified during write (late check)")

        temp_path.replace(path)

        logger.debug("atomic_write_success", path=str(path), size=len(content))

    except RecordModifiedError:
        if temp_path.exists():
            temp_path.unlink()
        raise

    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        logger.error("atomic_write_failed", path=str(path), error=str(e))
        raise


def _mtime_ns(path: Path) -> Optional[int]:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


class JsonFileEntryStore(EntryStore):
    """
    One JSON file per record under ``data_dir/<table>/<record_id>.json``.

    Blocking file I/O runs in a worker thread so the event loop keeps
    streaming other requests.

    Example:
        >>> store = JsonFileEntryStore(Path("~/.local/share/moodlog").expanduser())
        >>> await store.put_record("entries", "day-1", {"user_id": "u1"})
        >>> await store.update_record("entries", "day-1", {"mood": "calm"}, owner_id="u1")
        {'user_id': 'u1', 'mood': 'calm'}
    """

    def __init__(self, data_dir: Path, max_retries: int = 1):
        self.data_dir = Path(data_dir)
        self.max_retries = max_retries

    def record_path(self, table: str, record_id: str) -> Path:
        for name in (table, record_id):
            if not name or not _SAFE_NAME.match(name):
                raise RecordNotFoundError(table, record_id)
        return self.data_dir / table / f"{record_id}.json"

    def _read(self, path: Path, table: str, record_id: str) -> Record:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise RecordNotFoundError(table, record_id)

        try:
            record = json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt record file {path}: {e}") from e

        if not isinstance(record, dict):
            raise StorageError(f"Corrupt record file {path}: not an object")
        return record

    def _get_sync(self, table: str, record_id: str, owner_id: Optional[str]) -> Record:
        record = self._read(self.record_path(table, record_id), table, record_id)
        if not _owned_by(record, owner_id):
            raise RecordNotFoundError(table, record_id)
        return record

    def _modify_sync(
        self,
        table: str,
        record_id: str,
        mutate: RecordMutator,
        owner_id: Optional[str],
    ) -> Tuple[Record, bool]:
        path = self.record_path(table, record_id)
        attempt = 0

        while True:
            mtime_ns = _mtime_ns(path)
            current = self._read(path, table, record_id)
            if not _owned_by(current, owner_id):
                raise RecordNotFoundError(table, record_id)

            updated = mutate(copy.deepcopy(current))
            if updated == current:
                return current, False

            try:
                atomic_write(
                    path,
                    _serialize(updated, path),
                    expected_mtime_ns=mtime_ns,
                )
                return updated, True
            except RecordModifiedError:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.info(
                    "record_modified_retrying",
                    table=table,
                    record_id=record_id,
                    attempt=attempt,
                )

    def _put_sync(self, table: str, record_id: str, record: Record) -> None:
        path = self.record_path(table, record_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(path, _serialize(record, path))

    async def get_record(self, table, record_id, owner_id=None):
        return await asyncio.to_thread(self._get_sync, table, record_id, owner_id)

    async def modify_record(self, table, record_id, mutate, owner_id=None):
        return await asyncio.to_thread(self._modify_sync, table, record_id, mutate, owner_id)

    async def put_record(self, table, record_id, record):
        await asyncio.to_thread(self._put_sync, table, record_id, record)
