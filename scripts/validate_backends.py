#!/usr/bin/env python3
"""
Cross-check mining backends against the hashlib reference.

Runs a sequence of checks:
1. Accelerator detection (CuPy / CUDA)
2. CPU backend vs scalar reference on a spiral batch
3. CPU backend invariance under the number of partitions
4. Accelerator backend vs CPU backend (if a device is present)
5. Rare-hit frequency against the expected 1/rarity

Usage:
    python scripts/validate_backends.py
    python scripts/validate_backends.py --size 65536 --rarity 64
"""

import argparse
import math
import sys
import time
import traceback
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def section(name: str):
    print(f"\n{'='*60}")
    print(f"  {name}")
    print(f"{'='*60}")


def check(name: str, passed: bool, detail: str = ""):
    status = "PASS" if passed else "FAIL"
    mark = "✓" if passed else "✗"
    print(f"  [{status}] {mark} {name}" + (f" -- {detail}" if detail else ""))
    return passed


def make_batch(n: int):
    from bluespace.coordinates import Coordinate, WorkItem
    from bluespace.spiral import spiral_coordinates
    return [WorkItem.empty(c) for c in spiral_coordinates(Coordinate(0, 0), n)]


def main():
    ap = argparse.ArgumentParser(description="Validate Blue-Space miners")
    ap.add_argument("--size", type=int, default=16384)
    ap.add_argument("--rarity", type=int, default=64)
    ap.add_argument("--key", type=int, default=420)
    args = ap.parse_args()

    print("Blue-Space Backend Validation")
    print(f"Python: {sys.version}")

    from bluespace.miner import (
        CpuMiner, ReferenceMiner, create_miner,
        check_accelerator_availability,
    )
    from bluespace.errors import BackendUnavailable

    results = []

    section("1. Accelerator Detection")
    status = check_accelerator_availability()
    for k, v in status.items():
        print(f"  {k} = {v}")
    results.append(check("detection ran", True))

    section("2. CPU vs reference")
    n_ref = min(args.size, 4096)
    ref = ReferenceMiner().mine_batch(make_batch(n_ref), args.rarity, args.key)
    try:
        t0 = time.perf_counter()
        cpu = CpuMiner().mine_batch(make_batch(n_ref), args.rarity, args.key)
        dt = time.perf_counter() - t0
        same = all(a.digest == b.digest and a.is_rare == b.is_rare
                   for a, b in zip(ref, cpu))
        results.append(check(f"{n_ref} digests match hashlib", same,
                             f"{n_ref / max(dt, 1e-9):.0f} H/s"))
    except Exception as e:
        results.append(check("CPU backend", False, str(e)))
        traceback.print_exc()

    section("3. Partition invariance")
    base = CpuMiner(workers=1).mine_batch(make_batch(args.size),
                                          args.rarity, args.key)
    for workers in (2, 3, 8):
        other = CpuMiner(workers=workers, min_chunk=1).mine_batch(
            make_batch(args.size), args.rarity, args.key)
        same = [a.digest for a in base] == [b.digest for b in other]
        results.append(check(f"workers={workers} identical", same))

    section("4. Accelerator vs CPU")
    try:
        gpu_miner = create_miner("accelerator")
        t0 = time.perf_counter()
        gpu = gpu_miner.mine_batch(make_batch(args.size), args.rarity, args.key)
        dt = time.perf_counter() - t0
        same = all(a.digest == b.digest and a.is_rare == b.is_rare
                   for a, b in zip(base, gpu))
        results.append(check(f"{args.size} digests bit-identical", same,
                             f"{args.size / max(dt, 1e-9):.0f} H/s"))
    except BackendUnavailable as e:
        print(f"  [SKIP] accelerator: {e}")

    section("5. Rarity frequency")
    hits = sum(1 for it in base if it.is_rare)
    p = 1.0 / args.rarity
    mean = args.size * p
    sd = math.sqrt(args.size * p * (1 - p))
    z = (hits - mean) / max(sd, 1e-12)
    results.append(check("within 5 sigma of binomial", abs(z) < 5,
                         f"hits={hits} expected={mean:.1f} z={z:+.2f}"))

    section("Summary")
    n_pass = sum(results)
    print(f"  {n_pass}/{len(results)} checks passed")
    return 0 if all(results) else 1


if __name__ == "__main__":
    sys.exit(main())
