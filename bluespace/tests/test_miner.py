"""
Tests for the mining backends.

Every backend is compared against hashlib computed directly in the test,
so the reference miner, the numpy SHA-256 and the classification rule are
all checked independently.
"""

import hashlib
import math
import struct
import unittest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

import numpy as np

from bluespace.coordinates import Coordinate, WorkItem
from bluespace.errors import InvalidConfiguration
from bluespace.miner import (
    CpuMiner, ReferenceMiner, Miner, create_miner, normalize_backend,
)
from bluespace.miner.common import UINT64_MAX, batch_arrays, low64
from bluespace.miner.cpu import partition
from bluespace.miner.sha256 import (
    SHA256_IV, SHA256_K, sha256_coordinate_words, rare_mask,
)
from bluespace.spiral import spiral_coordinates

INT64_MIN, INT64_MAX = -(1 << 63), (1 << 63) - 1


def expected_digest(key, x, y):
    return hashlib.sha256(struct.pack("<Qqq", key, x, y)).hexdigest()


def expected_rare(key, x, y, rarity):
    return int(expected_digest(key, x, y)[-16:], 16) % rarity == 0


def make_batch(coords):
    return [WorkItem.empty(Coordinate(x, y)) for x, y in coords]


def spiral_batch(n, origin=(0, 0)):
    return [WorkItem.empty(c) for c in spiral_coordinates(Coordinate(*origin), n)]


EDGE_COORDS = [
    (0, 0), (1, 0), (0, 1), (-1, -1),
    (INT64_MAX, INT64_MIN), (INT64_MIN, INT64_MAX),
    (INT64_MAX, INT64_MAX), (INT64_MIN, INT64_MIN),
    (0xFFFFFFFF, -0xFFFFFFFF), (1 << 32, -(1 << 32)),
    (123456789, -987654321),
]


def _icbrt(n):
    x = 1 << ((n.bit_length() + 2) // 3)
    while True:
        y = (2 * x + n // (x * x)) // 3
        if y >= x:
            return x
        x = y


def _first_primes(count):
    primes, c = [], 2
    while len(primes) < count:
        if all(c % p for p in primes if p * p <= c):
            primes.append(c)
        c += 1
    return primes


class TestSha256Constants(unittest.TestCase):
    """Round constants derived from the first primes."""

    def test_round_constants(self):
        derived = [_icbrt(p << 96) & 0xFFFFFFFF for p in _first_primes(64)]
        self.assertEqual(list(SHA256_K), derived)

    def test_initial_hash(self):
        derived = [math.isqrt(p << 64) & 0xFFFFFFFF for p in _first_primes(8)]
        self.assertEqual(list(SHA256_IV), derived)


class TestVectorisedSha256(unittest.TestCase):

    def test_matches_hashlib(self):
        xs = np.array([c[0] for c in EDGE_COORDS], dtype=np.int64)
        ys = np.array([c[1] for c in EDGE_COORDS], dtype=np.int64)
        for key in (0, 1, 420, UINT64_MAX, 0x0123456789ABCDEF):
            words = sha256_coordinate_words(xs, ys, key)
            for i, (x, y) in enumerate(EDGE_COORDS):
                got = words[i].astype(">u4").tobytes().hex()
                self.assertEqual(got, expected_digest(key, x, y),
                                 f"key={key} ({x}, {y})")

    def test_rare_mask_uses_low_64_bits(self):
        xs = np.arange(-50, 50, dtype=np.int64)
        ys = np.zeros(100, dtype=np.int64)
        words = sha256_coordinate_words(xs, ys, 7)
        mask = rare_mask(words, 3)
        for i, x in enumerate(range(-50, 50)):
            self.assertEqual(bool(mask[i]), expected_rare(7, x, 0, 3))

    def test_empty(self):
        words = sha256_coordinate_words(np.zeros(0, np.int64),
                                        np.zeros(0, np.int64), 1)
        self.assertEqual(words.shape, (0, 8))

    def test_length_mismatch(self):
        with self.assertRaises(ValueError):
            sha256_coordinate_words(np.zeros(2, np.int64),
                                    np.zeros(3, np.int64), 1)


class TestCpuMiner(unittest.TestCase):

    def test_scenario_batch(self):
        """origin (0,0), rarity 16384, key 420, batch of 4."""
        batch = spiral_batch(4)
        CpuMiner().mine_batch(batch, 16384, 420)
        self.assertEqual([it.coordinate.as_tuple() for it in batch],
                         [(0, 0), (1, 0), (1, 1), (0, 1)])
        for it in batch:
            self.assertEqual(it.digest, expected_digest(420, it.x, it.y))
            self.assertEqual(it.is_rare, expected_rare(420, it.x, it.y, 16384))

        again = spiral_batch(4)
        CpuMiner().mine_batch(again, 16384, 420)
        self.assertEqual([a.digest for a in batch], [b.digest for b in again])

    def test_matches_reference_miner(self):
        a = ReferenceMiner().mine_batch(make_batch(EDGE_COORDS), 5, 99)
        b = CpuMiner().mine_batch(make_batch(EDGE_COORDS), 5, 99)
        self.assertEqual(a, b)

    def test_partition_count_does_not_change_output(self):
        base = CpuMiner(workers=1).mine_batch(spiral_batch(1001), 7, 420)
        for workers in (2, 3, 7, 16):
            other = CpuMiner(workers=workers, min_chunk=1).mine_batch(
                spiral_batch(1001), 7, 420)
            self.assertEqual(base, other, f"workers={workers}")

    def test_batch_size_does_not_change_output(self):
        whole = CpuMiner().mine_batch(spiral_batch(300), 11, 3)
        pieces = []
        for start in range(0, 300, 64):
            part = [WorkItem.empty(c) for c in spiral_coordinates(
                Coordinate(0, 0), min(64, 300 - start), start=start)]
            pieces.extend(CpuMiner().mine_batch(part, 11, 3))
        self.assertEqual(whole, pieces)

    def test_in_place_and_order_preserved(self):
        batch = make_batch([(5, 5), (-2, 9), (0, 0)])
        ids = [id(it) for it in batch]
        result = CpuMiner().mine_batch(batch, 2, 1)
        self.assertIs(result, batch)
        self.assertEqual([id(it) for it in batch], ids)
        self.assertEqual([it.coordinate.as_tuple() for it in batch],
                         [(5, 5), (-2, 9), (0, 0)])
        self.assertTrue(all(it.is_mined for it in batch))

    def test_rarity_one_marks_everything(self):
        batch = CpuMiner().mine_batch(spiral_batch(50), 1, 420)
        self.assertTrue(all(it.is_rare for it in batch))

    def test_rarity_frequency(self):
        n, rarity = 1 << 15, 64
        batch = CpuMiner().mine_batch(spiral_batch(n, origin=(1000, -1000)),
                                      rarity, 420)
        hits = sum(1 for it in batch if it.is_rare)
        p = 1.0 / rarity
        mean, sd = n * p, math.sqrt(n * p * (1 - p))
        self.assertLess(abs(hits - mean), 5 * sd,
                        f"hits={hits} expected~{mean:.0f}")

    def test_empty_batch(self):
        self.assertEqual(CpuMiner().mine_batch([], 16384, 420), [])

    def test_invalid_parameters(self):
        for rarity, key in [(0, 1), (-1, 1), (1 << 64, 1), (1, -1),
                            (1, 1 << 64), (True, 1), (2.5, 1)]:
            with self.assertRaises(InvalidConfiguration, msg=(rarity, key)):
                CpuMiner().mine_batch(spiral_batch(2), rarity, key)

    def test_max_parameters(self):
        batch = CpuMiner().mine_batch(make_batch(EDGE_COORDS),
                                      UINT64_MAX, UINT64_MAX)
        for it in batch:
            self.assertEqual(it.digest, expected_digest(UINT64_MAX, it.x, it.y))
            self.assertEqual(it.is_rare,
                             expected_rare(UINT64_MAX, it.x, it.y, UINT64_MAX))


class TestMinerBase(unittest.TestCase):

    def test_failure_leaves_batch_untouched(self):
        class Broken(Miner):
            def hash_arrays(self, xs, ys, rarity, key):
                raise RuntimeError("device lost")

        batch = spiral_batch(10)
        with self.assertRaises(RuntimeError):
            Broken().mine_batch(batch, 2, 2)
        self.assertFalse(any(it.is_mined for it in batch))

    def test_batch_arrays(self):
        xs, ys = batch_arrays(make_batch([(1, 2), (-3, 4)]))
        self.assertEqual(xs.tolist(), [1, -3])
        self.assertEqual(ys.tolist(), [2, 4])
        self.assertEqual(xs.dtype, np.int64)

    def test_low64(self):
        digest = bytes(range(32))
        self.assertEqual(low64(digest), int.from_bytes(bytes(range(24, 32)), "big"))


class TestBackendSelection(unittest.TestCase):

    def test_names(self):
        self.assertEqual(normalize_backend("CPU"), "cpu")
        self.assertEqual(normalize_backend("cuda"), "accelerator")
        self.assertEqual(normalize_backend("gpu"), "accelerator")
        with self.assertRaises(InvalidConfiguration):
            normalize_backend("fpga")

    def test_create(self):
        self.assertIsInstance(create_miner("cpu", workers=2), CpuMiner)
        self.assertEqual(create_miner("cpu", workers=2).workers, 2)
        self.assertIsInstance(create_miner("reference"), ReferenceMiner)

    def test_cpu_workers_validated(self):
        self.assertEqual(CpuMiner().workers, os.cpu_count() or 1)
        for bad in (0, -2, True, 2.5):
            with self.assertRaises(InvalidConfiguration, msg=repr(bad)):
                CpuMiner(workers=bad)

    def test_partition(self):
        slices = partition(10, 3)
        self.assertEqual([(s.start, s.stop) for s in slices],
                         [(0, 4), (4, 7), (7, 10)])
        self.assertEqual(partition(2, 8), [slice(0, 1), slice(1, 2)])
        self.assertEqual(partition(0, 4), [slice(0, 0)])

    def test_small_batches_stay_single_threaded(self):
        miner = CpuMiner(workers=8, min_chunk=4096)
        self.assertEqual(len(miner.partitions_for(100)), 1)
        self.assertEqual(len(miner.partitions_for(4096 * 3)), 3)
        self.assertEqual(len(miner.partitions_for(4096 * 100)), 8)


if __name__ == "__main__":
    unittest.main()
