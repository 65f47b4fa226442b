"""
End-to-end tests for SearchDriver: explorer -> miner -> storage, restart
behaviour, failure handling and JSONL run logging.
"""

import hashlib
import os
import shutil
import struct
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from bluespace.config import SearchConfig
from bluespace.coordinates import Coordinate
from bluespace.driver import SearchDriver
from bluespace.errors import (
    BackendUnavailable, InvalidConfiguration, StorageUnavailable,
)
from bluespace.logging import RunLogger, create_manifest, read_jsonl
from bluespace.miner import CpuMiner, Miner, create_miner
from bluespace.spiral import spiral_coordinates
from bluespace.storage import FileStorage, MemoryStorage


def expected_digest(key, x, y):
    return hashlib.sha256(struct.pack("<Qqq", key, x, y)).hexdigest()


class CursorFailStorage(MemoryStorage):
    """Items are stored, but the next cursor save fails once."""

    def __init__(self):
        super().__init__()
        self.fail_next_cursor = False

    def save_cursor(self, cursor):
        if self.fail_next_cursor:
            self.fail_next_cursor = False
            raise StorageUnavailable("cursor write lost", cursor=cursor)
        super().save_cursor(cursor)


class ExplodingMiner(Miner):
    name = "exploding"

    def hash_arrays(self, xs, ys, rarity, key):
        raise RuntimeError("kernel fault")


class TestDriverMemory(unittest.TestCase):

    def setUp(self):
        self.config = SearchConfig(batch_size=64, rarity=4, key=420,
                                   workers=2).validate()
        self.storage = MemoryStorage()

    def test_single_batch(self):
        driver = SearchDriver(self.config, storage=self.storage)
        report = driver.run_batch()

        self.assertEqual(report.size, 64)
        self.assertEqual((report.start_position, report.end_position), (0, 64))
        self.assertEqual(self.storage.count(), 64)
        self.assertEqual(driver.explorer.position, 64)
        self.assertEqual(self.storage.load_cursor(), driver.explorer.cursor)

        for c in spiral_coordinates(Coordinate(0, 0), 64):
            item = self.storage.load(c)
            self.assertEqual(item.digest, expected_digest(420, c.x, c.y))

        stored_rare = {it.coordinate for it in self.storage.iter_rare()}
        self.assertEqual({it.coordinate for it in report.rare}, stored_rare)
        self.assertTrue(all(it.is_rare for it in report.rare))

    def test_restart_continues(self):
        SearchDriver(self.config, storage=self.storage).run(n_batches=2)
        second = SearchDriver(self.config, storage=self.storage)
        self.assertEqual(second.explorer.position, 128)
        report = second.run_batch()
        self.assertEqual(report.start_position, 128)
        self.assertEqual(self.storage.count(), 192)

    def test_miner_failure_rolls_back(self):
        driver = SearchDriver(self.config, storage=self.storage,
                              miner=ExplodingMiner())
        with self.assertRaises(RuntimeError):
            driver.run_batch()
        self.assertEqual(driver.explorer.position, 0)
        self.assertEqual(self.storage.count(), 0)
        self.assertIsNone(self.storage.load_cursor())

        driver.miner = CpuMiner()
        report = driver.run_batch()
        self.assertEqual(report.start_position, 0)

    def test_lost_cursor_write_reemits_same_batch(self):
        storage = CursorFailStorage()
        first = SearchDriver(self.config, storage=storage)
        first.run_batch()

        storage.fail_next_cursor = True
        with self.assertRaises(StorageUnavailable):
            first.run_batch()
        self.assertEqual(storage.count(), 128)
        self.assertEqual(first.explorer.position, 64)

        # restart: the unacknowledged batch comes round again
        second = SearchDriver(self.config, storage=storage)
        report = second.run_batch()
        self.assertEqual((report.start_position, report.end_position),
                         (64, 128))
        self.assertEqual(storage.count(), 128)

    def test_bad_batch_size_rejected_before_work(self):
        driver = SearchDriver(self.config, storage=self.storage)
        for bad in (0, -3, True, 2.0):
            with self.assertRaises(InvalidConfiguration, msg=repr(bad)):
                driver.run_batch(bad)
        self.assertEqual(driver.explorer.position, 0)
        self.assertEqual(self.storage.count(), 0)
        self.assertEqual(driver.run_batch(5).size, 5)

    def test_summary_lines(self):
        report = SearchDriver(self.config, storage=self.storage).run_batch()
        self.assertTrue(report.summary_line().startswith("Mine 64 hashes in "))
        self.assertTrue(report.summary_line().endswith(" H/s)"))
        for line, item in zip(report.rare_lines(), report.rare):
            self.assertEqual(line, f"H({item.x}, {item.y}) = {item.digest}")


class TestBackendFallback(unittest.TestCase):

    def _unavailable(self, backend, **kwargs):
        if backend == "accelerator":
            raise BackendUnavailable("no device", backend=backend)
        return create_miner(backend, **kwargs)

    def test_fallback_to_cpu(self):
        cfg = SearchConfig(backend="accelerator", fallback_to_cpu=True,
                           batch_size=8).validate()
        with mock.patch("bluespace.driver.create_miner",
                        side_effect=self._unavailable):
            driver = SearchDriver(cfg, storage=MemoryStorage())
        self.assertTrue(driver.fallback_used)
        self.assertIsInstance(driver.miner, CpuMiner)

    def test_no_fallback_raises(self):
        cfg = SearchConfig(backend="accelerator", batch_size=8).validate()
        with mock.patch("bluespace.driver.create_miner",
                        side_effect=self._unavailable):
            with self.assertRaises(BackendUnavailable):
                SearchDriver(cfg, storage=MemoryStorage())


class TestDriverFile(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db = os.path.join(self.tmpdir, "explorer.db")
        self.config = SearchConfig(batch_size=100, rarity=3, key=7,
                                   origin=(10, 10),
                                   storage_path=self.db).validate()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_persisted_across_processes(self):
        with SearchDriver(self.config) as driver:
            driver.run(n_batches=2)
        with SearchDriver(self.config) as driver:
            self.assertEqual(driver.explorer.position, 200)
            driver.run_batch()
        with FileStorage(self.db) as storage:
            self.assertEqual(storage.count(), 300)
            coords = list(spiral_coordinates(Coordinate(10, 10), 300))
            last = storage.load(coords[-1])
            self.assertEqual(last.digest,
                             expected_digest(7, coords[-1].x, coords[-1].y))

    def test_run_logging(self):
        out = Path(self.tmpdir) / "out"
        with RunLogger(out) as logger:
            with SearchDriver(self.config, logger=logger) as driver:
                reports = driver.run(n_batches=2)
            create_manifest("test", self.config.to_dict()).save(out / "manifest.json")
            self.assertEqual(logger.summary["batches_logged"], 2)

        metrics = read_jsonl(out / "metrics.jsonl")
        self.assertEqual([m["event"] for m in metrics],
                         ["batch_complete", "batch_complete"])
        self.assertEqual(metrics[1]["start_position"], 100)

        rare = read_jsonl(out / "rare.jsonl")
        self.assertEqual(len(rare), sum(len(r.rare) for r in reports))
        for rec in rare:
            self.assertTrue(rec["is_rare"])
            self.assertEqual(rec["digest"],
                             expected_digest(7, rec["x"], rec["y"]))
        self.assertTrue((out / "manifest.json").exists())


if __name__ == "__main__":
    unittest.main()
