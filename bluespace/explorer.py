"""
SpiralExplorer: lazy, infinite, restartable coordinate enumeration.

The explorer owns an ExplorerCursor pointing at the next unemitted
position and persists it through Storage.  On construction the persisted
cursor (if any) is loaded, so a new explorer continues exactly where the
previous one stopped.

Two persistence modes:
  autoflush=True   cursor saved before every next()/next_batch() returns;
                   if the save fails nothing is emitted and the cursor
                   does not move.
  autoflush=False  cursor advances in memory only; flush() persists it.
                   After a crash the unflushed tail is re-emitted
                   identically from the last saved cursor.
"""

from typing import Iterator, List, Optional

from .coordinates import Coordinate, ExplorerCursor
from .errors import InvalidConfiguration
from .spiral import advance, coordinate_at, cursor_to_index
from .storage import Storage


class SpiralExplorer:
    """Enumerate lattice cells in expanding-square-spiral order.

    Usage:
        explorer = SpiralExplorer(storage, Coordinate(0, 0))
        c = explorer.next()
        batch = explorer.next_batch(1024)
    """

    def __init__(self, storage: Storage,
                 origin: Optional[Coordinate] = None,
                 autoflush: bool = True):
        self.storage = storage
        self.origin = origin if origin is not None else Coordinate(0, 0)
        self.autoflush = autoflush

        saved = storage.load_cursor()
        if saved is None:
            self._cursor = ExplorerCursor(origin=self.origin)
            self._resumed = False
        else:
            if saved.origin != self.origin:
                raise InvalidConfiguration(
                    f"stored cursor belongs to origin {saved.origin}, "
                    f"explorer configured with {self.origin}",
                    cursor=saved,
                )
            self._cursor = saved
            self._resumed = True
        self._flushed = self._cursor

    @property
    def cursor(self) -> ExplorerCursor:
        """Cursor of the next coordinate to be emitted."""
        return self._cursor

    @property
    def position(self) -> int:
        """Number of coordinates emitted over the explorer's lifetime."""
        return cursor_to_index(self._cursor)

    @property
    def pending(self) -> int:
        """Coordinates emitted but not yet covered by a saved cursor."""
        return self.position - cursor_to_index(self._flushed)

    @property
    def resumed(self) -> bool:
        return self._resumed

    def _walk(self, count: int):
        k, step = self._cursor.ring_index, self._cursor.step_index
        coords = []
        for _ in range(count):
            coords.append(coordinate_at(self.origin, k, step))
            k, step = advance(k, step)
        return coords, ExplorerCursor(origin=self.origin, ring_index=k,
                                      step_index=step)

    def _commit(self, new_cursor: ExplorerCursor) -> None:
        if self.autoflush:
            # raises StorageUnavailable before anything moves
            self.storage.save_cursor(new_cursor)
            self._flushed = new_cursor
        self._cursor = new_cursor

    def next(self) -> Coordinate:
        """Return the next coordinate in spiral order."""
        coords, new_cursor = self._walk(1)
        self._commit(new_cursor)
        return coords[0]

    def next_batch(self, count: int) -> List[Coordinate]:
        """Return the next ``count`` coordinates with a single cursor save."""
        if count < 0:
            raise ValueError(f"negative batch size {count}")
        if count == 0:
            return []
        coords, new_cursor = self._walk(count)
        self._commit(new_cursor)
        return coords

    def flush(self) -> None:
        """Persist the in-memory cursor."""
        if self._flushed == self._cursor:
            return
        self.storage.save_cursor(self._cursor)
        self._flushed = self._cursor

    def rollback(self) -> None:
        """Discard unflushed emissions; they will be emitted again."""
        self._cursor = self._flushed

    def __iter__(self) -> Iterator[Coordinate]:
        return self

    def __next__(self) -> Coordinate:
        return self.next()
