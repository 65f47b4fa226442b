"""
Shared mining semantics and the Miner base class.

Hash construction (identical on every backend):

  message  = key (uint64 LE) || x (int64 LE) || y (int64 LE)   24 bytes
  digest   = SHA-256(message)                  rendered as 64 hex chars
  low64    = last 8 digest bytes, big-endian unsigned
  is_rare  = low64 % rarity == 0

So a coordinate is rare with probability ~1/rarity, and any backend's
output can be checked against hashlib (see reference.py).
"""

import struct
from abc import ABC, abstractmethod
from typing import List, MutableSequence, Tuple

import numpy as np

from ..coordinates import WorkItem
from ..errors import InvalidConfiguration

UINT64_MAX = (1 << 64) - 1
DIGEST_BYTES = 32
DIGEST_WORDS = 8
LOW_BITS = 64

_MESSAGE = struct.Struct("<Qqq")


def validate_mining_params(rarity: int, key: int) -> None:
    """Reject parameters outside the uint64 domain before any work."""
    if isinstance(rarity, bool) or not isinstance(rarity, (int, np.integer)):
        raise InvalidConfiguration(f"rarity must be an integer, got {rarity!r}")
    if isinstance(key, bool) or not isinstance(key, (int, np.integer)):
        raise InvalidConfiguration(f"key must be an integer, got {key!r}")
    if not 1 <= int(rarity) <= UINT64_MAX:
        raise InvalidConfiguration(f"rarity must be in [1, 2^64), got {rarity}")
    if not 0 <= int(key) <= UINT64_MAX:
        raise InvalidConfiguration(f"key must be in [0, 2^64), got {key}")


def pack_message(key: int, x: int, y: int) -> bytes:
    return _MESSAGE.pack(key, x, y)


def low64(digest: bytes) -> int:
    return int.from_bytes(digest[DIGEST_BYTES - 8:], "big")


def classify(digest: bytes, rarity: int) -> bool:
    return low64(digest) % rarity == 0


def batch_arrays(batch: MutableSequence[WorkItem]) -> Tuple[np.ndarray, np.ndarray]:
    """int64 x and y arrays for a batch, in batch order."""
    n = len(batch)
    xs = np.fromiter((item.coordinate.x for item in batch),
                     dtype=np.int64, count=n)
    ys = np.fromiter((item.coordinate.y for item in batch),
                     dtype=np.int64, count=n)
    return xs, ys


def words_to_hex(words: np.ndarray) -> List[str]:
    """(n, 8) uint32 digest words -> n lowercase hex digests."""
    n = words.shape[0]
    flat = np.ascontiguousarray(words, dtype=np.uint32).astype(">u4").tobytes().hex()
    width = DIGEST_BYTES * 2
    return [flat[i * width:(i + 1) * width] for i in range(n)]


def fill_batch(batch: MutableSequence[WorkItem], words: np.ndarray,
               rare: np.ndarray) -> None:
    """Write digests and flags into the batch items, in place."""
    if words.shape != (len(batch), DIGEST_WORDS) or rare.shape != (len(batch),):
        raise RuntimeError(
            f"backend returned shapes {words.shape}/{rare.shape} "
            f"for a batch of {len(batch)}"
        )
    digests = words_to_hex(words)
    for item, digest, flag in zip(batch, digests, rare.tolist()):
        item.digest = digest
        item.is_rare = bool(flag)


class Miner(ABC):
    """Capability: mine_batch(batch, rarity, key).

    Subclasses implement hash_arrays(); the base class owns validation,
    packing and the in-place fill.  Items are only written after the whole
    batch has been hashed, so a failure leaves the batch untouched.
    """

    name = "base"

    def mine_batch(self, batch: MutableSequence[WorkItem], rarity: int,
                   key: int) -> MutableSequence[WorkItem]:
        validate_mining_params(rarity, key)
        if len(batch) == 0:
            return batch
        xs, ys = batch_arrays(batch)
        words, rare = self.hash_arrays(xs, ys, int(rarity), int(key))
        fill_batch(batch, np.asarray(words), np.asarray(rare, dtype=bool))
        return batch

    @abstractmethod
    def hash_arrays(self, xs: np.ndarray, ys: np.ndarray, rarity: int,
                    key: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return ((n, 8) uint32 digest words, (n,) bool rare flags)."""

    def describe(self) -> str:
        return self.name

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
