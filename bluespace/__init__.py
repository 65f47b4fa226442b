"""
Blue-Space: keyed-hash search over an unbounded 2-D lattice.

Coordinates are enumerated in an expanding square spiral around an
origin, hashed in large parallel batches with a secret key, and each
digest is tested against a rarity threshold:

  digest  = SHA-256(key_u64_le || x_i64_le || y_i64_le)
  is_rare = (last 8 digest bytes as big-endian u64) % rarity == 0

Results and the enumeration cursor are persisted so a search resumes
after interruption without re-examining any coordinate.  Mining runs on
the CPU (numpy, multi-core) or on a CUDA device (CuPy RawKernel); both
produce bit-identical digests.
"""

__version__ = "0.1.0"

from .coordinates import Coordinate, WorkItem, ExplorerCursor
from .errors import (
    BlueSpaceError, StorageUnavailable, CorruptRecord,
    BackendUnavailable, InvalidConfiguration,
)
from .spiral import (
    ring_size, ring_start_index, ring_offset, coordinate_at,
    cursor_to_index, index_to_cursor, spiral_coordinates,
)
from .storage import Storage, FileStorage, MemoryStorage
from .explorer import SpiralExplorer
from .miner import (
    Miner, CpuMiner, ReferenceMiner, create_miner, BACKENDS,
    check_accelerator_availability, reference_hexdigest,
)
from .config import SearchConfig, load_config
from .logging import RunLogger, RunManifest, create_manifest
from .driver import SearchDriver, BatchReport

__all__ = [
    "Coordinate", "WorkItem", "ExplorerCursor",
    "BlueSpaceError", "StorageUnavailable", "CorruptRecord",
    "BackendUnavailable", "InvalidConfiguration",
    "ring_size", "ring_start_index", "ring_offset", "coordinate_at",
    "cursor_to_index", "index_to_cursor", "spiral_coordinates",
    "Storage", "FileStorage", "MemoryStorage",
    "SpiralExplorer",
    "Miner", "CpuMiner", "ReferenceMiner", "create_miner", "BACKENDS",
    "check_accelerator_availability", "reference_hexdigest",
    "SearchConfig", "load_config",
    "RunLogger", "RunManifest", "create_manifest",
    "SearchDriver", "BatchReport",
]
