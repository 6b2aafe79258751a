"""Client for the sharded key/value service.

The client asks the shard controller which group owns a key's shard and
then talks to that group, refreshing its configuration on failure.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Sequence

from .ctrler_client import Clerk as CtrlerClerk
from .ctrler_common import N_SHARDS, Config
from .kv_common import Err, GetArgs, PutAppendArgs

RETRY_INTERVAL = 0.100

GET = "ShardKV.Get"
PUT_APPEND = "ShardKV.PutAppend"


def key2shard(key: str) -> int:
    """Return the shard that holds ``key``: its first byte modulo N_SHARDS."""
    data = key.encode("utf-8")
    first = data[0] if data else 0
    return first % N_SHARDS


def nrand() -> int:
    """Return a random non-negative integer below 2**62."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Routes Get, Put and Append to the group that owns each key.

    ``ctrlers`` are ends of the shard controller servers; ``make_end`` turns
    a server name from a configuration into an end with ``call(method, args)``.
    """

    def __init__(self, ctrlers: Sequence[Any], make_end: Callable[[str], Any]) -> None:
        self._sm = CtrlerClerk(ctrlers)
        self._config = Config()
        self._make_end = make_end

    def _refresh(self) -> None:
        time.sleep(RETRY_INTERVAL)
        self._config = self._sm.query(-1)

    def get(self, key: str) -> str:
        """Return the value of ``key``, or "" when it does not exist."""
        args = GetArgs(key=key)
        while True:
            gid = self._config.shards[key2shard(key)]
            for name in self._config.groups.get(gid, []):
                reply = self._make_end(name).call(GET, args)
                if reply is None:
                    continue
                if reply.err in (Err.OK, Err.NO_KEY):
                    return reply.value
                if reply.err == Err.WRONG_GROUP:
                    break
            self._refresh()

    def put_append(self, key: str, value: str, op: str) -> None:
        """Send a Put or Append of ``value`` to ``key``; ``op`` names which."""
        args = PutAppendArgs(key=key, value=value, op=op)
        while True:
            gid = self._config.shards[key2shard(key)]
            for name in self._config.groups.get(gid, []):
                reply = self._make_end(name).call(PUT_APPEND, args)
                if reply is None:
                    continue
                if reply.err == Err.OK:
                    return
                if reply.err == Err.WRONG_GROUP:
                    break
            self._refresh()

    def put(self, key: str, value: str) -> None:
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> None:
        self.put_append(key, value, "Append")