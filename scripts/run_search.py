#!/usr/bin/env python3
"""
Run a Blue-Space lattice search.

Enumerates coordinates in spiral order from the stored cursor, mines each
batch on the selected backend, persists results and the cursor, and
prints throughput plus every rare coordinate found.

Usage:
    python scripts/run_search.py
    python scripts/run_search.py --config configs/default.yaml --batches 10
    python scripts/run_search.py --backend accelerator --fallback-to-cpu
"""

import argparse
import sys
import time
import traceback
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from bluespace.config import SearchConfig, load_config
from bluespace.driver import SearchDriver
from bluespace.errors import BlueSpaceError
from bluespace.logging import RunLogger, create_manifest

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Blue-Space keyed-hash lattice search"
    )
    parser.add_argument("--config", type=str, default=None,
                        help=f"YAML config (default: {DEFAULT_CONFIG.name} "
                             "if present)")
    parser.add_argument("--storage", type=str, default=None,
                        help="Storage file path")
    parser.add_argument("--backend", type=str, default=None,
                        help="cpu | accelerator")
    parser.add_argument("--fallback-to-cpu", action="store_true",
                        default=None,
                        help="Use the CPU backend if the accelerator fails")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--batches", type=int, default=None,
                        help="Number of batches to mine")
    parser.add_argument("--rarity", type=int, default=None)
    parser.add_argument("--key", type=int, default=None)
    parser.add_argument("--workers", type=int, default=None,
                        help="CPU partitions (default: all cores)")
    parser.add_argument("--device", type=int, default=None,
                        help="Accelerator device id")
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Directory for manifest / JSONL logs")
    parser.add_argument("--run-id", type=str, default=None)
    return parser.parse_args(argv)


def build_config(args) -> SearchConfig:
    overrides = {
        "storage_path": args.storage,
        "backend": args.backend,
        "fallback_to_cpu": args.fallback_to_cpu,
        "batch_size": args.batch_size,
        "n_batches": args.batches,
        "rarity": args.rarity,
        "key": args.key,
        "workers": args.workers,
        "device_id": args.device,
        "output_dir": args.output_dir,
    }
    config_path = args.config or (DEFAULT_CONFIG if DEFAULT_CONFIG.exists() else None)
    if config_path is not None:
        return load_config(config_path, overrides)

    config = SearchConfig()
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    return config.validate()


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except BlueSpaceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    run_id = args.run_id or f"run_{int(time.time())}"
    logger = None
    if config.output_dir:
        output_dir = Path(config.output_dir)
        logger = RunLogger(output_dir)

    print("Blue-Space search")
    print(f"  Storage: {config.storage_path}")
    print(f"  Origin:  {tuple(config.origin)}")
    print(f"  Rarity:  {config.rarity}   Key: {config.key}")
    print(f"  Batch:   {config.batch_size} x {config.n_batches}", flush=True)

    try:
        with SearchDriver(config, logger=logger) as driver:
            print(f"  Backend: {driver.miner.describe()}"
                  + ("  (fallback)" if driver.fallback_used else ""))
            print(f"  Resume:  position {driver.explorer.position} "
                  f"({driver.explorer.cursor})", flush=True)

            if logger is not None:
                manifest = create_manifest(run_id, config.to_dict(),
                                           backend=driver.miner.describe())
                manifest.save(Path(config.output_dir) / "manifest.json")

            for _ in range(config.n_batches):
                report = driver.run_batch()
                print(report.summary_line(), flush=True)
                for line in report.rare_lines():
                    print(line)
    except BlueSpaceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        traceback.print_exc()
        return 1
    finally:
        if logger is not None:
            logger.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
