"""
Error kinds raised by the Blue-Space core.

Every error carries enough context (the coordinate or cursor involved)
for the caller to retry safely:

  - StorageUnavailable: medium unreachable / permission denied
  - CorruptRecord: a stored record failed validation on read
  - BackendUnavailable: the requested compute backend cannot initialize
  - InvalidConfiguration: rejected before any work begins
"""

from typing import Any, Optional


class BlueSpaceError(Exception):
    """Base class for all Blue-Space errors."""

    def __init__(self, message: str, coordinate: Any = None,
                 cursor: Any = None):
        self.coordinate = coordinate
        self.cursor = cursor
        context = []
        if coordinate is not None:
            context.append(f"coordinate={coordinate}")
        if cursor is not None:
            context.append(f"cursor={cursor}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class StorageUnavailable(BlueSpaceError, OSError):
    """Storage medium unreachable or not writable."""


class CorruptRecord(BlueSpaceError, ValueError):
    """A stored record failed validation on read."""


class BackendUnavailable(BlueSpaceError, RuntimeError):
    """Requested compute backend could not be initialized."""

    def __init__(self, message: str, backend: Optional[str] = None):
        self.backend = backend
        if backend:
            message = f"[{backend}] {message}"
        super().__init__(message)


class InvalidConfiguration(BlueSpaceError, ValueError):
    """Configuration rejected before any work begins."""
