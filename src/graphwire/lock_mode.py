from __future__ import annotations

from enum import Enum


class LockMode(Enum):
    """Select locking behavior for scope cache slots.

    Use ``THREAD`` (the default) when a container is shared between threads:
    concurrent requests for the same cache slot then construct the component
    exactly once and every caller receives that instance. ``NONE`` skips slot
    locking for single-threaded programs.
    """

    THREAD = "thread"
    """Guard each cache slot with its own ``threading.Lock``."""

    NONE = "none"
    """Disable locking around cache reads/writes."""
