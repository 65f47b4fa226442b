"""
Value types shared by the explorer, the miners and storage.

  Coordinate      immutable (x, y) lattice cell, int64 range
  WorkItem        coordinate + classification, filled in place by a miner
  ExplorerCursor  minimal state to resume spiral enumeration

A WorkItem is created empty (digest unset) and filled exactly once by
Miner.mine_batch; after that it is treated as immutable.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .errors import CorruptRecord

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1
DIGEST_HEX_LEN = 64


def check_int64(value: int, name: str = "value") -> int:
    """Return value as int, raising OverflowError outside int64."""
    value = int(value)
    if value < INT64_MIN or value > INT64_MAX:
        raise OverflowError(f"{name}={value} outside int64 range")
    return value


@dataclass(frozen=True)
class Coordinate:
    """One cell of the searched lattice."""
    x: int
    y: int

    def __post_init__(self):
        object.__setattr__(self, "x", check_int64(self.x, "x"))
        object.__setattr__(self, "y", check_int64(self.y, "y"))

    def offset(self, dx: int, dy: int) -> "Coordinate":
        return Coordinate(self.x + dx, self.y + dy)

    def as_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def __str__(self) -> str:
        return f"({self.x}, {self.y})"


@dataclass
class WorkItem:
    """A coordinate plus its computed classification.

    ``digest`` is None until a miner fills it.
    """
    coordinate: Coordinate
    is_rare: bool = False
    digest: Optional[str] = None

    @classmethod
    def empty(cls, coordinate: Coordinate) -> "WorkItem":
        return cls(coordinate=coordinate)

    @property
    def x(self) -> int:
        return self.coordinate.x

    @property
    def y(self) -> int:
        return self.coordinate.y

    @property
    def is_mined(self) -> bool:
        return self.digest is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.coordinate.x,
            "y": self.coordinate.y,
            "is_rare": bool(self.is_rare),
            "digest": self.digest,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WorkItem":
        return cls(
            coordinate=Coordinate(int(d["x"]), int(d["y"])),
            is_rare=bool(d["is_rare"]),
            digest=d["digest"],
        )


def validate_digest(digest: Any, coordinate: Coordinate = None) -> str:
    """Check a stored digest is 64 lowercase hex chars."""
    if not isinstance(digest, str) or len(digest) != DIGEST_HEX_LEN:
        raise CorruptRecord(f"bad digest {digest!r}", coordinate=coordinate)
    try:
        int(digest, 16)
    except ValueError:
        raise CorruptRecord(f"non-hex digest {digest!r}",
                            coordinate=coordinate) from None
    if digest != digest.lower():
        raise CorruptRecord(f"digest not lowercase {digest!r}",
                            coordinate=coordinate)
    return digest


@dataclass(frozen=True)
class ExplorerCursor:
    """Position of the NEXT coordinate to emit.

    ring_index 0 is the origin cell alone; ring k >= 1 has 8k cells and
    step_index runs over [0, 8k).
    """
    origin: Coordinate
    ring_index: int = 0
    step_index: int = 0

    def validate(self) -> "ExplorerCursor":
        """Raise CorruptRecord unless (ring_index, step_index) is a valid
        spiral position."""
        if self.ring_index < 0 or self.step_index < 0:
            raise CorruptRecord("negative cursor field", cursor=self)
        limit = 1 if self.ring_index == 0 else 8 * self.ring_index
        if self.step_index >= limit:
            raise CorruptRecord(
                f"step_index out of range for ring {self.ring_index}",
                cursor=self,
            )
        return self

    def to_dict(self) -> Dict[str, int]:
        return {
            "origin_x": self.origin.x,
            "origin_y": self.origin.y,
            "ring_index": self.ring_index,
            "step_index": self.step_index,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExplorerCursor":
        try:
            cursor = cls(
                origin=Coordinate(int(d["origin_x"]), int(d["origin_y"])),
                ring_index=int(d["ring_index"]),
                step_index=int(d["step_index"]),
            )
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise CorruptRecord(f"unreadable cursor record {d!r}: {e}") from e
        return cursor.validate()

    def __str__(self) -> str:
        return (f"origin={self.origin} ring={self.ring_index} "
                f"step={self.step_index}")
