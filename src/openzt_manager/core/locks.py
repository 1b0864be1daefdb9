"""Per-instance locks.

Serializes operations on the same instance id (create, reconcile, delete)
while letting different instances proceed concurrently.
"""

import asyncio


class InstanceLocks:
    """Lock table keyed by instance id."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, instance_id: str) -> asyncio.Lock:
        """Get or create the lock for an instance."""
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[instance_id] = lock
        return lock

    def discard(self, instance_id: str) -> None:
        """Forget the lock of a deleted instance.

        Ids are never reused, so a waiter still holding the old lock only
        finds the record gone.
        """
        self._locks.pop(instance_id, None)

    def __len__(self) -> int:
        return len(self._locks)
