# control-plane/core/locks.py
"""
Per-node mutual exclusion for gateway role mutations

Serializes read-modify-persist sequences on the same node inside one
process. Multiple control plane processes sharing a database still need
the caller to serialize admin requests per node.

The async admin routes run the managers on the event loop one at a time,
so the lock only contends for threaded or non-HTTP callers.
"""

from contextlib import contextmanager
from typing import Dict, Iterator
import threading


class NodeLockRegistry:
    """Lazily created lock per node id"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, node_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(node_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[node_id] = lock
            return lock

    @contextmanager
    def hold(self, node_id: str) -> Iterator[None]:
        lock = self._lock_for(node_id)
        with lock:
            yield

    def is_held(self, node_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(node_id)
        return lock is not None and lock.locked()


node_locks = NodeLockRegistry()
