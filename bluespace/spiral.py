"""
Square-spiral arithmetic.

Ring 0 is the origin cell alone.  Ring k (k >= 1) is the border of the
square of half-width k, 8k cells, starting at offset (k, -k+1) and going
clockwise in the sense of the lattice drawn with y up:

  1. up the right edge      (k, -k+1) .. (k, k)
  2. left across the top    (k-1, k)  .. (-k, k)
  3. down the left edge     (-k, k-1) .. (-k, -k)
  4. right across the bottom (-k+1, -k) .. (k, -k)

Ring k begins at ordinal (2k-1)^2, so a position can be addressed either
as (ring, step) or as a single ordinal index; both are total and
invertible.
"""

from math import isqrt
from typing import Iterator, Tuple

from .coordinates import Coordinate, ExplorerCursor


def ring_size(k: int) -> int:
    """Number of cells in ring k."""
    if k < 0:
        raise ValueError(f"negative ring index {k}")
    return 1 if k == 0 else 8 * k


def ring_start_index(k: int) -> int:
    """Ordinal index of the first cell of ring k."""
    if k < 0:
        raise ValueError(f"negative ring index {k}")
    return 0 if k == 0 else (2 * k - 1) ** 2


def ring_offset(k: int, step: int) -> Tuple[int, int]:
    """Offset from the origin of cell ``step`` in ring ``k``."""
    if not 0 <= step < ring_size(k):
        raise ValueError(f"step {step} out of range for ring {k}")
    if k == 0:
        return (0, 0)

    side = 2 * k
    edge, pos = divmod(step, side)
    if edge == 0:
        return (k, -k + 1 + pos)
    if edge == 1:
        return (k - 1 - pos, k)
    if edge == 2:
        return (-k, k - 1 - pos)
    return (-k + 1 + pos, -k)


def coordinate_at(origin: Coordinate, k: int, step: int) -> Coordinate:
    dx, dy = ring_offset(k, step)
    return origin.offset(dx, dy)


def advance(k: int, step: int) -> Tuple[int, int]:
    """(ring, step) of the position following (k, step)."""
    step += 1
    if step >= ring_size(k):
        return (k + 1, 0)
    return (k, step)


def cursor_to_index(cursor: ExplorerCursor) -> int:
    return ring_start_index(cursor.ring_index) + cursor.step_index


def index_to_position(n: int) -> Tuple[int, int]:
    """(ring, step) of ordinal index n."""
    if n < 0:
        raise ValueError(f"negative spiral index {n}")
    if n == 0:
        return (0, 0)
    k = (isqrt(n) + 1) // 2
    return (k, n - ring_start_index(k))


def index_to_cursor(origin: Coordinate, n: int) -> ExplorerCursor:
    k, step = index_to_position(n)
    return ExplorerCursor(origin=origin, ring_index=k, step_index=step)


def spiral_coordinates(
    origin: Coordinate,
    count: int,
    start: int = 0,
) -> Iterator[Coordinate]:
    """Yield ``count`` coordinates in spiral order from ordinal ``start``.

    Independent of any explorer state; used as the reference ordering.
    """
    k, step = index_to_position(start)
    for _ in range(count):
        yield coordinate_at(origin, k, step)
        k, step = advance(k, step)
