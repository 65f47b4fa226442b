"""
Scalar reference implementation of the coordinate hash.

Uses hashlib directly; this is the ground truth that the vectorised CPU
path and the CUDA kernel are tested against.
"""

import hashlib
from typing import Tuple

import numpy as np

from .common import Miner, classify, pack_message


def reference_digest(key: int, x: int, y: int) -> bytes:
    return hashlib.sha256(pack_message(key, x, y)).digest()


def reference_hexdigest(key: int, x: int, y: int) -> str:
    return reference_digest(key, x, y).hex()


def reference_is_rare(key: int, x: int, y: int, rarity: int) -> bool:
    return classify(reference_digest(key, x, y), rarity)


class ReferenceMiner(Miner):
    """One hashlib call per item. Slow; for verification only."""

    name = "reference"

    def hash_arrays(self, xs: np.ndarray, ys: np.ndarray, rarity: int,
                    key: int) -> Tuple[np.ndarray, np.ndarray]:
        n = len(xs)
        words = np.empty((n, 8), dtype=np.uint32)
        rare = np.empty(n, dtype=bool)
        for i, (x, y) in enumerate(zip(xs.tolist(), ys.tolist())):
            digest = reference_digest(key, x, y)
            words[i] = np.frombuffer(digest, dtype=">u4")
            rare[i] = classify(digest, rarity)
        return words, rare
