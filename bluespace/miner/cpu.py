"""
CPU backend: numpy SHA-256 over contiguous partitions of the batch.

Each partition is hashed by its own thread and writes only its own slice
of the output arrays; the only synchronisation is the final join.  numpy
releases the GIL inside the array kernels, so partitions run in parallel
on separate cores.  Output is independent of the partition count.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np

from ..errors import InvalidConfiguration
from .common import Miner
from .sha256 import rare_mask, sha256_coordinate_words


def partition(n: int, parts: int) -> List[slice]:
    """Split range(n) into ``parts`` contiguous, near-equal slices."""
    parts = max(1, min(parts, n)) if n > 0 else 1
    base, extra = divmod(n, parts)
    slices = []
    start = 0
    for i in range(parts):
        stop = start + base + (1 if i < extra else 0)
        slices.append(slice(start, stop))
        start = stop
    return slices


class CpuMiner(Miner):
    """Multi-core CPU miner.

    Args:
        workers: Number of partitions / threads (default: os.cpu_count()).
        min_chunk: Smallest partition worth a thread of its own.
    """

    name = "cpu"

    def __init__(self, workers: Optional[int] = None, min_chunk: int = 4096):
        if workers is None:
            workers = os.cpu_count() or 1
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise InvalidConfiguration(f"workers must be >= 1, got {workers!r}")
        self.workers = workers
        self.min_chunk = max(1, int(min_chunk))

    def partitions_for(self, n: int) -> List[slice]:
        parts = min(self.workers, max(1, -(-n // self.min_chunk)))
        return partition(n, parts)

    def hash_arrays(self, xs: np.ndarray, ys: np.ndarray, rarity: int,
                    key: int) -> Tuple[np.ndarray, np.ndarray]:
        n = len(xs)
        words = np.empty((n, 8), dtype=np.uint32)
        rare = np.empty(n, dtype=bool)

        def _work(sl: slice):
            w = sha256_coordinate_words(xs[sl], ys[sl], key)
            words[sl] = w
            rare[sl] = rare_mask(w, rarity)

        slices = self.partitions_for(n)
        if len(slices) == 1:
            _work(slices[0])
        else:
            with ThreadPoolExecutor(max_workers=len(slices)) as pool:
                futures = [pool.submit(_work, sl) for sl in slices]
                for fut in futures:
                    fut.result()
        return words, rare

    def describe(self) -> str:
        return f"cpu(workers={self.workers})"
