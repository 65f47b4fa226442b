"""
Search configuration.

Values come from a YAML file (see configs/default.yaml) and/or CLI flags
and are handed explicitly to the explorer and miner; nothing reads
process-wide state.  validate() rejects bad values before any work.
"""

import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .coordinates import Coordinate, INT64_MAX, INT64_MIN
from .errors import InvalidConfiguration
from .miner import normalize_backend, UINT64_MAX

# YAML section -> {key: SearchConfig field}
_SECTIONS = {
    "search": {"origin": "origin", "rarity": "rarity", "key": "key",
               "batch_size": "batch_size", "n_batches": "n_batches"},
    "miner": {"backend": "backend", "workers": "workers",
              "device_id": "device_id", "fallback_to_cpu": "fallback_to_cpu"},
    "storage": {"path": "storage_path"},
    "output": {"dir": "output_dir"},
}


@dataclass
class SearchConfig:
    """Configuration for a lattice search run.

    A coordinate is rare when the low 64 bits of its digest are divisible
    by ``rarity``; expected hit rate is 1/rarity.
    """
    origin: Tuple[int, int] = (0, 0)
    rarity: int = 16384
    key: int = 420
    batch_size: int = 256 * 256 * 4
    backend: str = "cpu"
    storage_path: str = "/tmp/explorer.db"
    workers: Optional[int] = None       # CPU partitions, default cpu_count
    device_id: int = 0                  # accelerator device
    fallback_to_cpu: bool = False       # on BackendUnavailable
    output_dir: Optional[str] = None    # JSONL run logs
    n_batches: int = 1

    @property
    def origin_coordinate(self) -> Coordinate:
        return Coordinate(*self.origin)

    def validate(self) -> "SearchConfig":
        def _int(name, value):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidConfiguration(
                    f"{name} must be an integer, got {value!r}")
            return value

        if len(self.origin) != 2:
            raise InvalidConfiguration(f"origin must be (x, y), got {self.origin!r}")
        for name, v in zip(("origin.x", "origin.y"), self.origin):
            if not INT64_MIN <= _int(name, v) <= INT64_MAX:
                raise InvalidConfiguration(f"{name}={v} outside int64")

        if _int("rarity", self.rarity) == 0:
            raise InvalidConfiguration("rarity must be non-zero")
        if not 1 <= self.rarity <= UINT64_MAX:
            raise InvalidConfiguration(f"rarity={self.rarity} outside uint64")
        if not 0 <= _int("key", self.key) <= UINT64_MAX:
            raise InvalidConfiguration(f"key={self.key} outside uint64")
        if _int("batch_size", self.batch_size) <= 0:
            raise InvalidConfiguration(
                f"batch_size must be positive, got {self.batch_size}")
        if _int("n_batches", self.n_batches) < 0:
            raise InvalidConfiguration(
                f"n_batches must be >= 0, got {self.n_batches}")
        if self.workers is not None and _int("workers", self.workers) < 1:
            raise InvalidConfiguration(f"workers must be >= 1, got {self.workers}")
        if _int("device_id", self.device_id) < 0:
            raise InvalidConfiguration(f"device_id must be >= 0, got {self.device_id}")
        if not self.storage_path:
            raise InvalidConfiguration("storage_path must be set")

        self.backend = normalize_backend(self.backend)
        return self

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["origin"] = list(self.origin)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SearchConfig":
        """Build from a nested config mapping.

        Accepts the flat field names, or the grouped layout used in YAML:
        ``search:``, ``miner:``, ``storage:``, ``output:``.  Unknown keys
        and non-mapping sections raise InvalidConfiguration.
        """
        fields = set(cls.__dataclass_fields__)
        unknown = set(d) - fields - set(_SECTIONS)
        if unknown:
            raise InvalidConfiguration(
                f"unknown config keys {sorted(map(str, unknown))}")

        flat: Dict[str, Any] = {}
        for section, mapping in _SECTIONS.items():
            src = d.get(section)
            if src is None:
                continue
            if not isinstance(src, dict):
                raise InvalidConfiguration(
                    f"config section {section!r} must be a mapping, "
                    f"got {src!r}")
            bad = set(src) - set(mapping)
            if bad:
                raise InvalidConfiguration(
                    f"unknown keys {sorted(map(str, bad))} in section {section!r}")
            for name, value in src.items():
                flat[mapping[name]] = value
        flat.update({k: v for k, v in d.items() if k in fields})

        if "origin" in flat:
            origin = flat["origin"]
            if isinstance(origin, dict):
                if set(origin) - {"x", "y"}:
                    raise InvalidConfiguration(
                        f"origin accepts only x and y, got {origin!r}")
                origin = (origin.get("x", 0), origin.get("y", 0))
            try:
                flat["origin"] = tuple(origin)
            except TypeError:
                raise InvalidConfiguration(
                    f"origin must be (x, y), got {origin!r}") from None
        return cls(**flat)


def load_config(config_path, overrides: Optional[Dict[str, Any]] = None
                ) -> SearchConfig:
    """Load YAML configuration, apply overrides, validate."""
    path = Path(os.path.expanduser(str(config_path)))
    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise InvalidConfiguration(f"cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise InvalidConfiguration(f"malformed YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidConfiguration(f"config {path} must be a mapping")

    config = SearchConfig.from_dict(raw)
    for name, value in (overrides or {}).items():
        if value is None:
            continue
        if name not in SearchConfig.__dataclass_fields__:
            raise InvalidConfiguration(f"unknown config field {name!r}")
        setattr(config, name, value)
    return config.validate()
