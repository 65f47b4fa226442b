"""
Batch miners for the coordinate hash.

Backends share one capability, ``mine_batch(batch, rarity, key)``:
  - cpu:          numpy SHA-256, partitioned across cores (always available)
  - accelerator:  CUDA kernel via CuPy (optional, raises BackendUnavailable)
  - reference:    scalar hashlib loop, ground truth for verification

The backend is chosen at runtime by name; see create_miner().
"""

import subprocess
from typing import Any, Dict, Optional

from ..errors import InvalidConfiguration
from .common import (
    Miner, validate_mining_params, pack_message, classify, low64,
    words_to_hex, UINT64_MAX,
)
from .cpu import CpuMiner
from .reference import (
    ReferenceMiner, reference_digest, reference_hexdigest, reference_is_rare,
)

BACKENDS = ("cpu", "accelerator", "reference")
_ALIASES = {"cuda": "accelerator", "gpu": "accelerator"}


def normalize_backend(name: str) -> str:
    key = str(name).strip().lower()
    key = _ALIASES.get(key, key)
    if key not in BACKENDS:
        raise InvalidConfiguration(
            f"unknown backend {name!r}; expected one of {', '.join(BACKENDS)}"
        )
    return key


def create_miner(backend: str = "cpu", workers: Optional[int] = None,
                 device_id: int = 0) -> Miner:
    """Instantiate the named backend.

    Raises:
        InvalidConfiguration: unknown backend name.
        BackendUnavailable: accelerator requested but not usable.
    """
    backend = normalize_backend(backend)
    if backend == "cpu":
        return CpuMiner(workers=workers)
    if backend == "reference":
        return ReferenceMiner()
    from .cuda import CudaMiner
    return CudaMiner(device_id=device_id)


def check_accelerator_availability() -> Dict[str, Any]:
    """Report CuPy / CUDA device status for diagnostics."""
    result = {
        "cupy_found": False,
        "cupy_version": None,
        "device_count": 0,
        "gpu_detected": False,
        "driver": "unknown",
    }

    try:
        import cupy as cp
        result["cupy_found"] = True
        result["cupy_version"] = cp.__version__
        result["device_count"] = int(cp.cuda.runtime.getDeviceCount())
        result["gpu_detected"] = result["device_count"] > 0
    except Exception:
        pass

    try:
        r = subprocess.run(["nvidia-smi", "--query-gpu=driver_version",
                            "--format=csv,noheader"],
                           capture_output=True, text=True, timeout=5)
        if r.returncode == 0 and r.stdout.strip():
            result["driver"] = r.stdout.strip().splitlines()[0]
    except Exception:
        pass

    return result


__all__ = [
    "Miner", "CpuMiner", "ReferenceMiner",
    "BACKENDS", "normalize_backend", "create_miner",
    "check_accelerator_availability",
    "validate_mining_params", "pack_message", "classify", "low64",
    "words_to_hex", "UINT64_MAX",
    "reference_digest", "reference_hexdigest", "reference_is_rare",
]
