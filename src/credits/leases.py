"""In-process leases preventing concurrent execution of the same grant."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from credits.errors import GrantBusyError

logger = logging.getLogger(__name__)


class GrantLeaseRegistry:
    """Non-blocking, per-grant exclusive leases for one process.

    Cross-process exclusion is the deployer's concern; the award uniqueness
    constraint still guards against double awards.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: set[int] = set()

    def try_acquire(self, grant_id: int) -> bool:
        """Claim the grant; return False when already held."""
        with self._lock:
            if grant_id in self._held:
                return False
            self._held.add(grant_id)
            return True

    def release(self, grant_id: int) -> None:
        """Release a previously acquired grant lease."""
        with self._lock:
            self._held.discard(grant_id)

    def is_held(self, grant_id: int) -> bool:
        """Return whether a lease is currently held for the grant."""
        with self._lock:
            return grant_id in self._held

    @contextmanager
    def lease(self, grant_id: int) -> Iterator[None]:
        """Hold the grant lease for the duration of a block or raise GrantBusyError."""
        if not self.try_acquire(grant_id):
            logger.warning("Grant %s is already executing; refusing overlap.", grant_id)
            raise GrantBusyError(f"Grant is already executing: {grant_id}", {"grant_id": grant_id})
        try:
            yield
        finally:
            self.release(grant_id)
