"""
Durable persistence for mined WorkItems and the explorer cursor.

Logical schema:
  work_items       (x, y) -> (is_rare, digest)
  explorer_cursor  single reserved row -> ExplorerCursor

FileStorage keeps both in one SQLite file.  Every mutating call is one
transaction; with the WAL journal the new state is written to the log
first and becomes visible atomically at commit, so a crash mid-write
leaves readers with either the old or the new record.  synchronous=FULL
makes a returned store()/save_cursor() survive power loss.

MemoryStorage has the same interface without durability (tests, dry runs).
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .coordinates import Coordinate, ExplorerCursor, WorkItem, validate_digest
from .errors import CorruptRecord, StorageUnavailable

CURSOR_KEY = "cursor"

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS work_items (
        x INTEGER NOT NULL,
        y INTEGER NOT NULL,
        is_rare INTEGER NOT NULL,
        digest TEXT NOT NULL,
        PRIMARY KEY (x, y)
    ) WITHOUT ROWID
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_work_items_rare
        ON work_items (is_rare) WHERE is_rare = 1
    """,
    """
    CREATE TABLE IF NOT EXISTS explorer_cursor (
        name TEXT PRIMARY KEY,
        origin_x INTEGER NOT NULL,
        origin_y INTEGER NOT NULL,
        ring_index INTEGER NOT NULL,
        step_index INTEGER NOT NULL
    )
    """,
]


def _item_row(item: WorkItem) -> Tuple[int, int, int, str]:
    if not item.is_mined:
        raise ValueError(f"cannot store unmined work item at {item.coordinate}")
    validate_digest(item.digest, item.coordinate)
    return (item.coordinate.x, item.coordinate.y, int(bool(item.is_rare)),
            item.digest)


def _row_item(x: int, y: int, is_rare, digest) -> WorkItem:
    coord = Coordinate(x, y)
    if is_rare not in (0, 1):
        raise CorruptRecord(f"bad is_rare flag {is_rare!r}", coordinate=coord)
    validate_digest(digest, coord)
    return WorkItem(coordinate=coord, is_rare=bool(is_rare), digest=digest)


class Storage(ABC):
    """Key-value persistence for WorkItems plus one ExplorerCursor.

    Writers are serialised internally, so the API tolerates concurrent
    callers even though the driver uses a single writer.
    """

    @abstractmethod
    def store_many(self, items: Iterable[WorkItem]) -> int:
        """Upsert items atomically (all or none). Returns count stored."""

    def store(self, item: WorkItem) -> None:
        """Idempotent upsert keyed by item.coordinate."""
        self.store_many([item])

    @abstractmethod
    def load(self, coordinate: Coordinate) -> Optional[WorkItem]:
        """Point lookup; None if absent."""

    def contains(self, coordinate: Coordinate) -> bool:
        return self.load(coordinate) is not None

    @abstractmethod
    def save_cursor(self, cursor: ExplorerCursor) -> None:
        """Atomically replace the resumability record."""

    @abstractmethod
    def load_cursor(self) -> Optional[ExplorerCursor]:
        """The persisted cursor, or None for a fresh store."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored work items."""

    @abstractmethod
    def iter_rare(self) -> Iterator[WorkItem]:
        """Stored items with is_rare set."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class MemoryStorage(Storage):
    """In-process storage. Not durable across process restart."""

    def __init__(self):
        self._items: Dict[Coordinate, Tuple[bool, str]] = {}
        self._cursor: Optional[ExplorerCursor] = None
        self._lock = threading.Lock()

    def store_many(self, items: Iterable[WorkItem]) -> int:
        # validate everything before touching the map
        rows = [_item_row(item) for item in items]
        with self._lock:
            for x, y, is_rare, digest in rows:
                self._items[Coordinate(x, y)] = (bool(is_rare), digest)
        return len(rows)

    def load(self, coordinate: Coordinate) -> Optional[WorkItem]:
        with self._lock:
            rec = self._items.get(coordinate)
        if rec is None:
            return None
        return WorkItem(coordinate=coordinate, is_rare=rec[0], digest=rec[1])

    def save_cursor(self, cursor: ExplorerCursor) -> None:
        cursor.validate()
        with self._lock:
            self._cursor = cursor

    def load_cursor(self) -> Optional[ExplorerCursor]:
        with self._lock:
            return self._cursor

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def iter_rare(self) -> Iterator[WorkItem]:
        with self._lock:
            rare = [(c, d) for c, (r, d) in self._items.items() if r]
        rare.sort(key=lambda cd: cd[0].as_tuple())
        for coord, digest in rare:
            yield WorkItem(coordinate=coord, is_rare=True, digest=digest)


class FileStorage(Storage):
    """SQLite-backed storage addressed by a file path.

    Usage:
        with FileStorage("/tmp/explorer.db") as storage:
            storage.store(item)
            storage.save_cursor(cursor)
    """

    def __init__(self, path, timeout: float = 30.0):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # autocommit mode: transactions are opened explicitly
            self._conn = sqlite3.connect(
                str(self.path), timeout=timeout,
                isolation_level=None, check_same_thread=False,
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=FULL")
            for stmt in _SCHEMA:
                self._conn.execute(stmt)
        except (OSError, sqlite3.OperationalError) as e:
            self._discard_connection()
            raise StorageUnavailable(
                f"cannot open storage at {self.path}: {e}") from e
        except sqlite3.DatabaseError as e:
            self._discard_connection()
            raise CorruptRecord(
                f"storage file {self.path} is not readable: {e}") from e

    def _discard_connection(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageUnavailable(f"storage at {self.path} is closed")
        return self._conn

    def _write(self, sql: str, rows: List[tuple],
               coordinate: Coordinate = None,
               cursor: ExplorerCursor = None) -> None:
        """Execute ``sql`` for every row inside one transaction."""
        with self._lock:
            conn = self._connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.executemany(sql, rows)
                    conn.execute("COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
            except sqlite3.OperationalError as e:
                raise StorageUnavailable(
                    f"write to {self.path} failed: {e}",
                    coordinate=coordinate, cursor=cursor,
                ) from e
            except sqlite3.DatabaseError as e:
                raise CorruptRecord(
                    f"write to {self.path} failed: {e}",
                    coordinate=coordinate, cursor=cursor,
                ) from e

    def _read(self, sql: str, params: tuple = (),
              coordinate: Coordinate = None) -> List[tuple]:
        with self._lock:
            conn = self._connection()
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.OperationalError as e:
                raise StorageUnavailable(
                    f"read from {self.path} failed: {e}",
                    coordinate=coordinate,
                ) from e
            except sqlite3.DatabaseError as e:
                raise CorruptRecord(
                    f"read from {self.path} failed: {e}",
                    coordinate=coordinate,
                ) from e

    # -- work items ---------------------------------------------------------

    def store_many(self, items: Iterable[WorkItem]) -> int:
        rows = [_item_row(item) for item in items]
        if not rows:
            return 0
        first = Coordinate(rows[0][0], rows[0][1])
        self._write(
            "INSERT OR REPLACE INTO work_items (x, y, is_rare, digest) "
            "VALUES (?, ?, ?, ?)",
            rows, coordinate=first,
        )
        return len(rows)

    def load(self, coordinate: Coordinate) -> Optional[WorkItem]:
        rows = self._read(
            "SELECT is_rare, digest FROM work_items WHERE x = ? AND y = ?",
            (coordinate.x, coordinate.y), coordinate=coordinate,
        )
        if not rows:
            return None
        is_rare, digest = rows[0]
        return _row_item(coordinate.x, coordinate.y, is_rare, digest)

    def count(self) -> int:
        return int(self._read("SELECT COUNT(*) FROM work_items")[0][0])

    def iter_rare(self) -> Iterator[WorkItem]:
        rows = self._read(
            "SELECT x, y, is_rare, digest FROM work_items "
            "WHERE is_rare = 1 ORDER BY x, y"
        )
        for x, y, is_rare, digest in rows:
            yield _row_item(x, y, is_rare, digest)

    # -- cursor -------------------------------------------------------------

    def save_cursor(self, cursor: ExplorerCursor) -> None:
        cursor.validate()
        self._write(
            "INSERT OR REPLACE INTO explorer_cursor "
            "(name, origin_x, origin_y, ring_index, step_index) "
            "VALUES (?, ?, ?, ?, ?)",
            [(CURSOR_KEY, cursor.origin.x, cursor.origin.y,
              cursor.ring_index, cursor.step_index)],
            cursor=cursor,
        )

    def load_cursor(self) -> Optional[ExplorerCursor]:
        rows = self._read(
            "SELECT origin_x, origin_y, ring_index, step_index "
            "FROM explorer_cursor WHERE name = ?",
            (CURSOR_KEY,),
        )
        if not rows:
            return None
        origin_x, origin_y, ring_index, step_index = rows[0]
        return ExplorerCursor.from_dict({
            "origin_x": origin_x,
            "origin_y": origin_y,
            "ring_index": ring_index,
            "step_index": step_index,
        })

    def close(self) -> None:
        with self._lock:
            self._discard_connection()
