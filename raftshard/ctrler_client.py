"""Client for the replicated shard controller service."""

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, List, Sequence

from .ctrler_common import (
    Config,
    JoinArgs,
    LeaveArgs,
    MoveArgs,
    QueryArgs,
)

RETRY_INTERVAL = 0.100

QUERY = "ShardCtrler.Query"
JOIN = "ShardCtrler.Join"
LEAVE = "ShardCtrler.Leave"
MOVE = "ShardCtrler.Move"


def nrand() -> int:
    """Return a random non-negative integer below 2**62."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Sends controller requests to each known server until a leader answers.

    Each server end offers ``call(method, args)`` that returns the reply,
    or ``None`` when the request or the reply was lost.
    """

    def __init__(self, servers: Sequence[Any]) -> None:
        self._servers = list(servers)

    def _invoke(self, method: str, args: Any) -> Any:
        while True:
            for srv in self._servers:
                reply = srv.call(method, args)
                if reply is not None and not reply.wrong_leader:
                    return reply
            time.sleep(RETRY_INTERVAL)

    def query(self, num: int) -> Config:
        """Fetch configuration ``num``, or the latest one when ``num`` is -1."""
        return self._invoke(QUERY, QueryArgs(num=num)).config

    def join(self, servers: Dict[int, List[str]]) -> None:
        """Add replica groups, given as gid -> server names."""
        self._invoke(JOIN, JoinArgs(servers=servers))

    def leave(self, gids: List[int]) -> None:
        """Remove the given replica groups."""
        self._invoke(LEAVE, LeaveArgs(gids=gids))

    def move(self, shard: int, gid: int) -> None:
        """Hand ``shard`` over to group ``gid``."""
        self._invoke(MOVE, MoveArgs(shard=shard, gid=gid))