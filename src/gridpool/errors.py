"""Error taxonomy shared by every gridpool component.

All errors derive from ``GridpoolError`` so callers (and the CLI) can catch
the whole family in one place. Where a builtin exception already describes
the condition, the gridpool error also subclasses it (``ConfigError`` is a
``ValueError``, ``NotFoundError`` is a ``LookupError``).
"""

from __future__ import annotations


class GridpoolError(Exception):
    """Base class for all gridpool errors."""


class ConfigError(GridpoolError, ValueError):
    """Invalid configuration or geometry (inverted bbox, non-positive chunk size)."""


class FetchError(GridpoolError):
    """A single transport attempt against one endpoint failed."""


class NetworkError(GridpoolError):
    """Transport failure after the fallback attempt has been exhausted."""


class EmptyResponseError(NetworkError):
    """The data server answered, but with no usable elements."""


class IntegrityError(GridpoolError):
    """Checksum mismatch while reading a cached payload."""


class NotFoundError(GridpoolError, LookupError):
    """Missing cache entry, unknown worker, or unknown chunk."""


class TransitionError(GridpoolError):
    """Illegal work status transition."""


class SerializationError(GridpoolError, ValueError):
    """Malformed persisted or wire-format record."""
