"""Storage for a Raft peer's persistent state and the service snapshot."""

from __future__ import annotations

import threading
from typing import Optional


def _frozen(data: Optional[bytes]) -> bytes:
    """Return an immutable copy of ``data``; ``None`` becomes empty bytes."""
    return bytes(data) if data is not None else b""


class Persister:
    """Thread-safe holder for Raft state bytes and a service snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._raftstate = b""
        self._snapshot = b""

    def copy(self) -> "Persister":
        """Return a new persister holding the same contents."""
        with self._lock:
            other = Persister()
            other._raftstate = self._raftstate
            other._snapshot = self._snapshot
        return other

    def read_raft_state(self) -> bytes:
        with self._lock:
            return self._raftstate

    def raft_state_size(self) -> int:
        with self._lock:
            return len(self._raftstate)

    def save(self, raftstate: Optional[bytes], snapshot: Optional[bytes]) -> None:
        """Store Raft state and snapshot together as one atomic action."""
        state = _frozen(raftstate)
        snap = _frozen(snapshot)
        with self._lock:
            self._raftstate = state
            self._snapshot = snap

    def read_snapshot(self) -> bytes:
        with self._lock:
            return self._snapshot

    def snapshot_size(self) -> int:
        with self._lock:
            return len(self._snapshot)