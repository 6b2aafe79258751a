"""Messages, log entries, roles and persisted state of a Raft peer."""

from __future__ import annotations

import logging
import pickle
import random
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, List

DEBUG = False

ELECTION_TIMEOUT = 0.300
HEARTBEAT_TIMEOUT = 0.150
APPLY_INTERVAL = 0.100
RPC_TIMEOUT = 0.100
MAX_LOCK_TIME = 0.010

_FORMAT_TAG = "raft-state-v1"

_log = logging.getLogger(__name__)


class Role(IntEnum):
    FOLLOWER = 0
    CANDIDATE = 1
    LEADER = 2


@dataclass
class ApplyMsg:
    """A committed command or an installed snapshot handed to the service."""

    command_valid: bool = False
    command: Any = None
    command_index: int = 0
    snapshot_valid: bool = False
    snapshot: bytes = b""
    snapshot_term: int = 0
    snapshot_index: int = 0


@dataclass
class LogEntry:
    term: int = 0
    idx: int = 0
    command: Any = None


@dataclass
class AppendEntriesArgs:
    term: int = 0
    leader_id: int = 0
    prev_log_index: int = 0
    prev_log_term: int = 0
    entries: List[LogEntry] = field(default_factory=list)
    leader_commit: int = 0


@dataclass
class AppendEntriesReply:
    term: int = 0
    success: bool = False
    next_index: int = 0


@dataclass
class RequestVoteArgs:
    term: int = 0
    candidate_id: int = 0
    last_log_index: int = 0
    last_log_term: int = 0


@dataclass
class RequestVoteReply:
    term: int = 0
    vote_granted: bool = False


def _initial_log() -> List[LogEntry]:
    return [LogEntry()]


@dataclass
class PersistentState:
    """The part of a peer's state that must survive a restart."""

    term: int = 0
    vote_for: int = -1
    commit_index: int = 0
    last_snapshot_index: int = 0
    last_snapshot_term: int = 0
    log_entries: List[LogEntry] = field(default_factory=_initial_log)

    def to_bytes(self) -> bytes:
        entries = [(e.term, e.idx, e.command) for e in self.log_entries]
        payload = (
            _FORMAT_TAG,
            self.term,
            self.vote_for,
            self.commit_index,
            self.last_snapshot_index,
            self.last_snapshot_term,
            entries,
        )
        return pickle.dumps(payload, protocol=pickle.HIGHEST_PROTOCOL)

    @classmethod
    def from_bytes(cls, data: bytes) -> "PersistentState":
        """Decode state written by ``to_bytes``; raise ValueError if malformed."""
        if not data:
            raise ValueError("no persisted raft state")
        try:
            payload = pickle.loads(data)
        except Exception as exc:
            raise ValueError("raft state decode error") from exc
        if not isinstance(payload, tuple) or len(payload) != 7 or payload[0] != _FORMAT_TAG:
            raise ValueError("raft state decode error")
        _, term, vote_for, commit_index, snap_index, snap_term, entries = payload
        try:
            log_entries = [LogEntry(t, i, c) for t, i, c in entries]
        except (TypeError, ValueError) as exc:
            raise ValueError("raft state decode error") from exc
        return cls(term, vote_for, commit_index, snap_index, snap_term, log_entries)


def rand_election_timeout() -> float:
    """Seconds to wait before starting an election: in [T, 2T)."""
    return ELECTION_TIMEOUT + random.random() * ELECTION_TIMEOUT


def dprintf(format: str, *args: Any) -> None:
    """Log a printf-style debug message when DEBUG is on."""
    if DEBUG:
        _log.debug(format, *args)