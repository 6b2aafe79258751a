"""A single Raft peer: leader election, log replication and persistence."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, List, Optional, Sequence, Tuple

from .persister import Persister
from .raft_types import (
    HEARTBEAT_TIMEOUT,
    APPLY_INTERVAL,
    RPC_TIMEOUT,
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    LogEntry,
    PersistentState,
    RequestVoteArgs,
    RequestVoteReply,
    Role,
    rand_election_timeout,
)

REQUEST_VOTE = "Raft.RequestVote"
APPEND_ENTRIES = "Raft.AppendEntries"

_FAILED_CALL_PAUSE = 0.010

_log = logging.getLogger(__name__)


class _Timer:
    """A resettable one-shot timer that a single loop thread waits on."""

    def __init__(self, delay: float, stopped: threading.Event) -> None:
        self._cond = threading.Condition()
        self._stopped = stopped
        self._deadline: Optional[float] = time.monotonic() + delay

    def reset(self, delay: float) -> None:
        with self._cond:
            self._deadline = time.monotonic() + delay
            self._cond.notify_all()

    def wake(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def wait(self) -> bool:
        """Block until the timer fires (True) or the peer is stopped (False)."""
        with self._cond:
            while not self._stopped.is_set():
                if self._deadline is None:
                    self._cond.wait()
                    continue
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    self._deadline = None
                    return True
                self._cond.wait(remaining)
            return False


class Raft:
    """One Raft peer.

    ``peers`` holds one end per server, this one included at index ``me``.
    Each end offers ``call(method, args)`` that returns the handler's reply,
    or ``None`` when the request or the reply was lost.  Committed commands
    are delivered as :class:`ApplyMsg` through ``apply_ch.put``.
    """

    def __init__(
        self,
        peers: Sequence[Any],
        me: int,
        persister: Persister,
        apply_ch: Any,
    ) -> None:
        self._peers = list(peers)
        self._me = me
        self._persister = persister
        self._apply_ch = apply_ch
        self.debug_log = False

        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._apply_signal = threading.Event()

        self._role = Role.FOLLOWER
        self._term = 0
        self._vote_for = -1
        self._log_entries: List[LogEntry] = [LogEntry()]
        self._commit_index = 0
        self._last_snapshot_index = 0
        self._last_snapshot_term = 0
        self._last_applied = 0
        self._next_index: List[int] = []
        self._match_index: List[int] = []

        self._read_persist(persister.read_raft_state())

        self._election_timer = _Timer(rand_election_timeout(), self._stopped)
        self._heartbeat_timers = {
            i: _Timer(HEARTBEAT_TIMEOUT, self._stopped)
            for i in range(len(self._peers))
            if i != self._me
        }

        self._spawn(self._apply_loop)
        self._spawn(self._election_loop)
        for peer in self._heartbeat_timers:
            self._spawn(self._heartbeat_loop, peer)

    # ----- public interface -------------------------------------------------

    def get_state(self) -> Tuple[int, bool]:
        """Return the current term and whether this peer believes it leads."""
        with self._lock:
            return self._term, self._role == Role.LEADER

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        with self._lock:
            reply = self._handle_request_vote(args)
            self._debug("request vote, args:%s, reply:%s", args, reply)
            return reply

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        with self._lock:
            self._debug("append entries:%s", args)
            reply = self._handle_append_entries(args)
            self._persist()
            self._debug("append entries:%s, reply:%s", args, reply)
            return reply

    def start(self, command: Any) -> Tuple[int, int, bool]:
        """Propose ``command``; return (index, term, is_leader) at once."""
        with self._lock:
            term = self._term
            is_leader = self._role == Role.LEADER
            _, last_index = self._last_log_term_index()
            index = last_index + 1
            if is_leader:
                self._log_entries.append(LogEntry(term=term, idx=index, command=command))
                self._match_index[self._me] = index
                self._persist()
            self._reset_heartbeat_timers()
            return index, term, is_leader

    def kill(self) -> None:
        """Stop this peer's background threads."""
        self._stopped.set()
        self._election_timer.wake()
        for timer in self._heartbeat_timers.values():
            timer.wake()
        self._apply_signal.set()

    def killed(self) -> bool:
        return self._stopped.is_set()

    # ----- handlers -----------------------------------------------------------

    def _handle_request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        last_term, last_index = self._last_log_term_index()
        reply = RequestVoteReply(term=self._term, vote_granted=False)

        if args.term < self._term:
            return reply
        if args.term == self._term:
            if self._role == Role.LEADER:
                return reply
            if self._vote_for == args.candidate_id:
                reply.vote_granted = True
                return reply
            if self._vote_for != -1:
                return reply

        if args.term > self._term:
            self._term = args.term
            self._vote_for = -1
            self._change_role(Role.FOLLOWER)

        if last_term > args.last_log_term or (
            args.last_log_term == last_term and args.last_log_index < last_index
        ):
            self._persist()
            return reply

        self._term = args.term
        self._vote_for = args.candidate_id
        reply.vote_granted = True
        self._change_role(Role.FOLLOWER)
        self._reset_election_timer()
        self._debug("vote for:%d", args.candidate_id)
        self._persist()
        return reply

    def _handle_append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        reply = AppendEntriesReply(term=self._term)
        if self._term > args.term:
            return reply

        self._term = args.term
        self._change_role(Role.FOLLOWER)
        self._reset_election_timer()
        _, last_index = self._last_log_term_index()

        if args.prev_log_index < self._last_snapshot_index:
            reply.next_index = self._last_snapshot_index + 1
        elif args.prev_log_index > last_index:
            reply.next_index = last_index + 1
        elif args.prev_log_index == self._last_snapshot_index:
            if not self._out_of_order(args):
                reply.success = True
                self._log_entries = self._log_entries[:1] + list(args.entries)
                reply.next_index = self._last_log_term_index()[1] + 1
        elif self._entry_at(args.prev_log_index).term == args.prev_log_term:
            if not self._out_of_order(args):
                reply.success = True
                keep = self._position(args.prev_log_index) + 1
                self._log_entries = self._log_entries[:keep] + list(args.entries)
                reply.next_index = self._last_log_term_index()[1] + 1
        else:
            self._debug("prev log not match")
            term = self._entry_at(args.prev_log_index).term
            idx = args.prev_log_index
            while (
                idx > self._commit_index
                and idx > self._last_snapshot_index
                and self._entry_at(idx).term == term
            ):
                idx -= 1
            reply.next_index = idx + 1

        if reply.success and self._commit_index < args.leader_commit:
            self._commit_index = args.leader_commit
            self._apply_signal.set()
        return reply

    def _out_of_order(self, args: AppendEntriesArgs) -> bool:
        args_last_index = args.prev_log_index + len(args.entries)
        last_term, last_index = self._last_log_term_index()
        return args_last_index < last_index and last_term == args.term

    # ----- elections ----------------------------------------------------------

    def _election_loop(self) -> None:
        while self._election_timer.wait():
            self._start_election()

    def _start_election(self) -> None:
        with self._lock:
            self._election_timer.reset(rand_election_timeout())
            if self._role == Role.LEADER:
                return
            self._debug("start election")
            self._change_role(Role.CANDIDATE)
            last_term, last_index = self._last_log_term_index()
            args = RequestVoteArgs(
                term=self._term,
                candidate_id=self._me,
                last_log_index=last_index,
                last_log_term=last_term,
            )
            self._persist()

        total = len(self._peers)
        majority = total // 2
        votes: "queue.Queue[bool]" = queue.Queue()
        for peer in range(total):
            if peer != self._me:
                self._spawn(self._solicit_vote, peer, args, votes)

        granted = 1
        answered = 1
        while answered < total and granted <= majority and answered - granted <= majority:
            answered += 1
            if votes.get():
                granted += 1

        if granted <= majority:
            self._debug("granted count <= majority: %d", granted)
            return

        with self._lock:
            if self._term == args.term and self._role == Role.CANDIDATE:
                self._change_role(Role.LEADER)
                self._persist()
            if self._role == Role.LEADER:
                self._reset_heartbeat_timers()

    def _solicit_vote(self, peer: int, args: RequestVoteArgs, votes: "queue.Queue[bool]") -> None:
        reply = self._send_request_vote(peer, args)
        votes.put(reply is not None and reply.vote_granted)
        if reply is None or reply.term <= args.term:
            return
        with self._lock:
            if self._term < reply.term:
                self._term = reply.term
                self._change_role(Role.FOLLOWER)
                self._reset_election_timer()
                self._persist()

    def _send_request_vote(self, peer: int, args: RequestVoteArgs) -> Optional[RequestVoteReply]:
        """Retry lost calls until one answers or the RPC timeout runs out."""
        deadline = time.monotonic() + RPC_TIMEOUT
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            reply = self._call(peer, REQUEST_VOTE, args, min(remaining, RPC_TIMEOUT))
            if reply is not None:
                return reply

    # ----- replication --------------------------------------------------------

    def _heartbeat_loop(self, peer: int) -> None:
        timer = self._heartbeat_timers[peer]
        while timer.wait():
            self._append_entries_to_peer(peer)

    def _append_entries_to_peer(self, peer: int) -> None:
        while not self.killed():
            with self._lock:
                if self._role != Role.LEADER:
                    self._reset_heartbeat_timer(peer)
                    return
                args = self._append_entries_args(peer)
                self._reset_heartbeat_timer(peer)

            reply = self._call(peer, APPEND_ENTRIES, args, RPC_TIMEOUT)
            if self.killed():
                return
            if reply is None:
                self._debug("append to peer %d failed, args:%s", peer, args)
                continue

            with self._lock:
                if reply.term > self._term:
                    self._change_role(Role.FOLLOWER)
                    self._reset_election_timer()
                    self._term = reply.term
                    self._persist()
                    return
                if self._role != Role.LEADER or self._term != args.term:
                    return
                if reply.success:
                    if reply.next_index > self._next_index[peer]:
                        self._next_index[peer] = reply.next_index
                        self._match_index[peer] = reply.next_index - 1
                    if args.entries and args.entries[-1].term == self._term:
                        self._update_commit_index()
                    self._persist()
                    return
                if reply.next_index != 0:
                    if reply.next_index <= self._last_snapshot_index:
                        return
                    self._next_index[peer] = reply.next_index

    def _append_entries_args(self, peer: int) -> AppendEntriesArgs:
        next_idx = self._next_index[peer]
        last_term, last_index = self._last_log_term_index()
        entries: List[LogEntry] = []
        if next_idx <= self._last_snapshot_index or next_idx > last_index:
            prev_index, prev_term = last_index, last_term
        else:
            entries = list(self._log_entries[self._position(next_idx):])
            prev_index = next_idx - 1
            if prev_index == self._last_snapshot_index:
                prev_term = self._last_snapshot_term
            else:
                prev_term = self._entry_at(prev_index).term
        return AppendEntriesArgs(
            term=self._term,
            leader_id=self._me,
            prev_log_index=prev_index,
            prev_log_term=prev_term,
            entries=entries,
            leader_commit=self._commit_index,
        )

    def _update_commit_index(self) -> None:
        majority = len(self._peers) // 2
        has_commit = False
        _, last_index = self._last_log_term_index()
        for index in range(self._commit_index + 1, last_index + 1):
            if sum(1 for m in self._match_index if m >= index) <= majority:
                break
            self._commit_index = index
            has_commit = True
            self._debug("update commit index:%d", index)
        if has_commit:
            self._apply_signal.set()

    # ----- applying -----------------------------------------------------------

    def _apply_loop(self) -> None:
        while not self.killed():
            self._apply_signal.wait(APPLY_INTERVAL)
            if self.killed():
                return
            self._apply_signal.clear()
            self._apply_logs()

    def _apply_logs(self) -> None:
        with self._lock:
            if self._last_applied < self._last_snapshot_index:
                msgs = [
                    ApplyMsg(
                        command_valid=False,
                        command="installSnapShot",
                        command_index=self._last_snapshot_index,
                    )
                ]
            else:
                msgs = [
                    ApplyMsg(
                        command_valid=True,
                        command=self._entry_at(i).command,
                        command_index=i,
                    )
                    for i in range(self._last_applied + 1, self._commit_index + 1)
                ]
        for msg in msgs:
            self._apply_ch.put(msg)
            with self._lock:
                self._debug("sent apply msg idx:%d", msg.command_index)
                self._last_applied = msg.command_index

    # ----- state helpers (caller holds the lock) ------------------------------

    def _change_role(self, role: Role) -> None:
        self._role = role
        if role == Role.CANDIDATE:
            self._term += 1
            self._vote_for = self._me
            self._reset_election_timer()
        elif role == Role.LEADER:
            _, last_index = self._last_log_term_index()
            self._next_index = [last_index + 1] * len(self._peers)
            self._match_index = [0] * len(self._peers)
            self._match_index[self._me] = last_index
            self._reset_election_timer()

    def _last_log_term_index(self) -> Tuple[int, int]:
        term = self._log_entries[-1].term
        index = self._last_snapshot_index + len(self._log_entries) - 1
        return term, index

    def _position(self, log_index: int) -> int:
        return log_index - self._last_snapshot_index

    def _entry_at(self, log_index: int) -> LogEntry:
        return self._log_entries[self._position(log_index)]

    def _reset_election_timer(self) -> None:
        self._election_timer.reset(rand_election_timeout())

    def _reset_heartbeat_timers(self) -> None:
        for timer in self._heartbeat_timers.values():
            timer.reset(0)

    def _reset_heartbeat_timer(self, peer: int) -> None:
        self._heartbeat_timers[peer].reset(HEARTBEAT_TIMEOUT)

    def _persist(self) -> None:
        state = PersistentState(
            term=self._term,
            vote_for=self._vote_for,
            commit_index=self._commit_index,
            last_snapshot_index=self._last_snapshot_index,
            last_snapshot_term=self._last_snapshot_term,
            log_entries=list(self._log_entries),
        )
        self._persister.save(state.to_bytes(), None)

    def _read_persist(self, data: bytes) -> None:
        if not data:
            return
        state = PersistentState.from_bytes(data)
        self._term = state.term
        self._vote_for = state.vote_for
        self._commit_index = state.commit_index
        self._last_snapshot_index = state.last_snapshot_index
        self._last_snapshot_term = state.last_snapshot_term
        self._log_entries = list(state.log_entries)

    # ----- plumbing -----------------------------------------------------------

    def _call(self, peer: int, method: str, args: Any, timeout: float) -> Any:
        """Send one RPC; return its reply, or None if lost or too slow."""
        box: "queue.Queue[Any]" = queue.Queue(maxsize=1)

        def run() -> None:
            reply = self._peers[peer].call(method, args)
            if reply is None:
                time.sleep(_FAILED_CALL_PAUSE)
            box.put(reply)

        self._spawn(run)
        try:
            return box.get(timeout=timeout)
        except queue.Empty:
            return None

    @staticmethod
    def _spawn(target: Any, *args: Any) -> None:
        threading.Thread(target=target, args=args, daemon=True).start()

    def _debug(self, fmt: str, *args: Any) -> None:
        if not self.debug_log:
            return
        term, idx = self._last_log_term_index()
        _log.debug(
            "me:%d role:%s term:%d commit:%d snidx:%d apply:%d match:%s next:%s "
            "lastlogterm:%d idx:%d: " + fmt,
            self._me, self._role.name, self._term, self._commit_index,
            self._last_snapshot_index, self._last_applied, self._match_index,
            self._next_index, term, idx, *args,
        )