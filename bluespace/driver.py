"""
SearchDriver: pulls coordinates from the explorer, mines them, persists.

One batch:
  1. take batch_size coordinates (cursor advanced in memory only)
  2. mine_batch fills digest / is_rare
  3. store_many writes every item in one transaction
  4. flush the cursor

A crash anywhere before step 4 re-emits the same coordinates on restart;
storing them again is an idempotent overwrite with identical content.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import SearchConfig
from .coordinates import WorkItem
from .errors import BackendUnavailable, InvalidConfiguration
from .explorer import SpiralExplorer
from .logging import RunLogger
from .miner import Miner, create_miner
from .storage import FileStorage, Storage


@dataclass
class BatchReport:
    """Outcome of one mined and persisted batch."""
    batch_index: int
    size: int
    start_position: int
    end_position: int
    mine_time_sec: float
    store_time_sec: float
    backend: str
    rare: List[WorkItem] = field(default_factory=list)

    @property
    def wall_time_sec(self) -> float:
        return self.mine_time_sec + self.store_time_sec

    @property
    def hashes_per_sec(self) -> float:
        return self.size / max(self.wall_time_sec, 1e-9)

    def summary_line(self) -> str:
        ms = self.wall_time_sec * 1000.0
        return (f"Mine {self.size} hashes in {ms:.0f} ms "
                f"({self.hashes_per_sec:.1f} H/s)")

    def rare_lines(self) -> List[str]:
        return [f"H({it.x}, {it.y}) = {it.digest}" for it in self.rare]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "batch_complete",
            "batch_index": self.batch_index,
            "size": self.size,
            "start_position": self.start_position,
            "end_position": self.end_position,
            "mine_time_sec": self.mine_time_sec,
            "store_time_sec": self.store_time_sec,
            "wall_time_sec": self.wall_time_sec,
            "hashes_per_sec": self.hashes_per_sec,
            "n_rare": len(self.rare),
            "backend": self.backend,
        }


class SearchDriver:
    """Compose explorer, miner and storage for a search run.

    Usage:
        with SearchDriver(SearchConfig(...).validate()) as driver:
            for report in driver.run(n_batches=4):
                print(report.summary_line())

    Storage and miner passed in are borrowed; ones the driver creates
    itself are closed by close().
    """

    def __init__(self, config: SearchConfig,
                 storage: Optional[Storage] = None,
                 miner: Optional[Miner] = None,
                 logger: Optional[RunLogger] = None):
        self.config = config.validate()
        self.logger = logger
        self.fallback_used = False

        self._owns_storage = storage is None
        self.storage = storage if storage is not None else FileStorage(
            config.storage_path)

        self._owns_miner = miner is None
        try:
            self.miner = miner if miner is not None else self._select_miner()
            self.explorer = SpiralExplorer(
                self.storage, config.origin_coordinate, autoflush=False)
        except BaseException:
            self.close()
            raise

        self._batch_index = 0

    def _select_miner(self) -> Miner:
        cfg = self.config
        try:
            return create_miner(cfg.backend, workers=cfg.workers,
                                device_id=cfg.device_id)
        except BackendUnavailable as e:
            if cfg.backend != "accelerator" or not cfg.fallback_to_cpu:
                raise
            self.fallback_used = True
            if self.logger is not None:
                self.logger.log_metrics({
                    "event": "backend_fallback",
                    "requested": cfg.backend,
                    "error": str(e),
                })
            return create_miner("cpu", workers=cfg.workers)

    def run_batch(self, batch_size: Optional[int] = None) -> BatchReport:
        """Mine and persist one batch; returns its report."""
        size = self.config.batch_size if batch_size is None else batch_size
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise InvalidConfiguration(
                f"batch_size must be a positive integer, got {size!r}",
                cursor=self.explorer.cursor)
        start = self.explorer.position

        batch = [WorkItem.empty(c) for c in self.explorer.next_batch(size)]

        try:
            t0 = time.perf_counter()
            self.miner.mine_batch(batch, self.config.rarity, self.config.key)
            t1 = time.perf_counter()
            self.storage.store_many(batch)
            self.explorer.flush()
            t2 = time.perf_counter()
        except BaseException:
            self.explorer.rollback()
            raise

        report = BatchReport(
            batch_index=self._batch_index,
            size=len(batch),
            start_position=start,
            end_position=self.explorer.position,
            mine_time_sec=t1 - t0,
            store_time_sec=t2 - t1,
            backend=self.miner.describe(),
            rare=[item for item in batch if item.is_rare],
        )
        self._batch_index += 1

        if self.logger is not None:
            self.logger.log_metrics(report.to_dict())
            for item in report.rare:
                self.logger.log_rare(item, batch_index=report.batch_index)
        return report

    def run(self, n_batches: Optional[int] = None) -> List[BatchReport]:
        n = self.config.n_batches if n_batches is None else int(n_batches)
        return [self.run_batch() for _ in range(n)]

    def close(self) -> None:
        if self._owns_miner and getattr(self, "miner", None) is not None:
            self.miner.close()
        if self._owns_storage and self.storage is not None:
            self.storage.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
