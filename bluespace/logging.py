"""
Structured logging for lattice search runs.

Produces, in the run's output directory:
  - manifest.json: one-time run metadata (git hash, config, node info)
  - rare.jsonl:    one record per rare coordinate found
  - metrics.jsonl: per-batch timing and throughput
"""

import json
import os
import hashlib
import platform
import subprocess
import sys
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Any, List

from .coordinates import WorkItem


@dataclass
class RunManifest:
    """Run-level metadata, saved once per run."""
    run_id: str
    timestamp: str
    git_commit: str
    config_hash: str
    node_name: str
    python_version: str
    backend: str
    config: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def save(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)


def _get_git_commit() -> str:
    """Get current git commit hash, or 'unknown'."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, timeout=5,
        )
        return result.stdout.strip() if result.returncode == 0 else "unknown"
    except Exception:
        return "unknown"


def config_hash(config: Dict[str, Any]) -> str:
    """Deterministic hash of config dict."""
    s = json.dumps(config, sort_keys=True, default=str)
    return hashlib.sha256(s.encode()).hexdigest()[:16]


def create_manifest(
    run_id: str,
    config: Dict[str, Any],
    backend: str = "cpu",
) -> RunManifest:
    """Create a RunManifest with auto-detected metadata."""
    return RunManifest(
        run_id=run_id,
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        git_commit=_get_git_commit(),
        config_hash=config_hash(config),
        node_name=os.environ.get("SLURMD_NODENAME", platform.node()),
        python_version=sys.version,
        backend=backend,
        config=config,
    )


class RunLogger:
    """Structured JSONL logger for one search process.

    Writes two files:
      - rare.jsonl     (rare work items)
      - metrics.jsonl  (batch timing / throughput)
    """

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self._rare_path = self.output_dir / "rare.jsonl"
        self._metrics_path = self.output_dir / "metrics.jsonl"

        # append mode: a resumed search keeps extending the same logs
        self._rare_f = open(self._rare_path, 'a')
        self._metrics_f = open(self._metrics_path, 'a')

        self._rare_count = 0
        self._batches = 0

    def log_rare(self, item: WorkItem, **context):
        record = item.to_dict()
        record.update(context)
        record["timestamp"] = time.time()
        self._rare_f.write(json.dumps(record, default=str) + "\n")
        self._rare_f.flush()
        self._rare_count += 1

    def log_metrics(self, record: Dict[str, Any]):
        """Log timing / performance metrics."""
        record = dict(record)
        record["timestamp"] = time.time()
        self._metrics_f.write(json.dumps(record, default=str) + "\n")
        self._metrics_f.flush()
        if record.get("event") == "batch_complete":
            self._batches += 1

    def close(self):
        """Flush and close all log files."""
        for f in [self._rare_f, self._metrics_f]:
            if not f.closed:
                f.flush()
                f.close()

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "rare_logged": self._rare_count,
            "batches_logged": self._batches,
        }

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def read_jsonl(path: Path) -> List[Dict[str, Any]]:
    """Read back a JSONL log written by RunLogger."""
    records = []
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records
