"""
Snapshot Storage - Durable, atomically replaced record snapshots.

A snapshot is only ever replaced as a whole. Writers stage the complete
candidate snapshot first and commit it in one step, so readers observe either
the previous snapshot or the new one, never a partial write.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import StorageError
from .models import Record


SNAPSHOT_VERSION = 1


class Snapshot:
    """Immutable ordered collection of committed records."""

    __slots__ = ('_records',)

    def __init__(self, records: Iterable[Record] = ()):
        self._records: Tuple[Record, ...] = tuple(records)

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    def appended(self, records: Iterable[Record]) -> "Snapshot":
        """Return a new snapshot with records added at the end."""
        return Snapshot(self._records + tuple(records))

    @property
    def records(self) -> Tuple[Record, ...]:
        return self._records

    def keys(self) -> List[str]:
        return [record.key for record in self._records]

    def find(self, key: str) -> Optional[Record]:
        """Most recently committed record with this key, if any."""
        for record in reversed(self._records):
            if record.key == key:
                return record
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': SNAPSHOT_VERSION,
            'count': len(self._records),
            'records': [record.to_dict() for record in self._records],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        records = data.get('records')
        if not isinstance(records, list):
            raise ValueError("snapshot has no 'records' list")
        return cls(Record.from_dict(item) for item in records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"Snapshot(records={len(self._records)})"


class StagingHandle:
    """
    A staged candidate snapshot awaiting commit.

    Use as a context manager: on exit the staging artifact is discarded unless
    it was committed, on both the success and the failure path.
    """

    def __init__(self, path: Path, snapshot: Snapshot):
        self.path = path
        self.snapshot = snapshot
        self.committed = False

    def discard(self) -> None:
        if self.committed:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> "StagingHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.discard()
        return False

    def __repr__(self) -> str:
        return f"<StagingHandle path='{self.path}' committed={self.committed}>"


class SnapshotStorage(ABC):
    """Storage collaborator implementing the stage-then-commit protocol."""

    @abstractmethod
    def load_snapshot(self) -> Snapshot:
        """Return the current snapshot (empty if none was ever committed)."""
        pass

    @abstractmethod
    def write_staging(self, snapshot: Snapshot) -> StagingHandle:
        """Write a full candidate snapshot to a staging location."""
        pass

    @abstractmethod
    def commit_staging(self, handle: StagingHandle) -> None:
        """Atomically substitute the staged snapshot for the current one."""
        pass


class JsonSnapshotStorage(SnapshotStorage):
    """Snapshot stored as a single JSON document, replaced with os.replace()."""

    def __init__(self, path, indent: Optional[int] = None):
        self.path = Path(path)
        self.indent = indent
        self.logger = logging.getLogger(self.__class__.__name__)

    def load_snapshot(self) -> Snapshot:
        if not self.path.exists():
            return Snapshot.empty()

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return Snapshot.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Cannot load snapshot {self.path}: {e}") from e

    def write_staging(self, snapshot: Snapshot) -> StagingHandle:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".staging", dir=str(self.path.parent)
            )
        except OSError as e:
            raise StorageError(f"Cannot create staging file for {self.path}: {e}") from e

        handle = StagingHandle(Path(tmp_name), snapshot)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(snapshot.to_dict(), f, indent=self.indent, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
        except (OSError, TypeError, ValueError) as e:
            handle.discard()
            raise StorageError(f"Cannot write staging file {tmp_name}: {e}") from e

        self.logger.debug(f"Staged {len(snapshot)} records at {tmp_name}")
        return handle

    def commit_staging(self, handle: StagingHandle) -> None:
        try:
            os.replace(handle.path, self.path)
        except OSError as e:
            raise StorageError(f"Cannot commit {handle.path} to {self.path}: {e}") from e
        handle.committed = True
        self.logger.debug(f"Committed snapshot {self.path}")
