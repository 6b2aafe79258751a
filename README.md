# raftshard

Building blocks for a fault-tolerant, sharded key/value service, written
with the standard library only:

- `raftshard.raft.Raft`: a Raft consensus peer. It elects leaders,
  replicates its log, tracks which entries are committed and persists its
  state. Committed entries are handed to the service as `ApplyMsg` values.
- `raftshard.persister.Persister`: thread-safe storage for a peer's Raft
  state and a service snapshot. Both are saved together as one atomic
  action.
- `raftshard.raft_types`: the peer's message types (`ApplyMsg`, `LogEntry`,
  `RequestVoteArgs`, `RequestVoteReply`, `AppendEntriesArgs`,
  `AppendEntriesReply`), the `Role` enum, `PersistentState` and
  `rand_election_timeout()`.
- `raftshard.ctrler_client.Clerk`: a client for a shard controller, with
  `query`, `join`, `leave` and `move`. The configuration and message types
  it uses are in `raftshard.ctrler_common`.
- `raftshard.kv_client.Clerk`: a client for a sharded key/value store with
  `get`, `put`, `append` and `put_append`. The message types and the `Err`
  codes it uses are in `raftshard.kv_common`.

## Installation

```
pip install .
```

Install the test extra and run the tests with:

```
pip install ".[test]"
pytest
```

## Transport

The package does not include a network layer. Every peer or server is
reached through an *end*, which is any object with a
`call(method, args)` method. It returns the handler's reply object, or
`None` when the request or the reply was lost. The method names used are
these:

- `raftshard.raft.REQUEST_VOTE` and `raftshard.raft.APPEND_ENTRIES`, which
  a server should route to `Raft.request_vote` and `Raft.append_entries`.
- `QUERY`, `JOIN`, `LEAVE` and `MOVE` in `raftshard.ctrler_client`.
- `GET` and `PUT_APPEND` in `raftshard.kv_client`.

## Running a Raft peer

```python
import queue

from raftshard.persister import Persister
from raftshard.raft import Raft

applied = queue.Queue()
peer = Raft(peers, me=0, persister=Persister(), apply_ch=applied)

term, is_leader = peer.get_state()
index, term, is_leader = peer.start("some command")
msg = applied.get()      # an ApplyMsg with command_valid=True once committed
peer.kill()
```

`peers` holds one end per server, this peer's own included at index `me`.
Whatever is passed as `apply_ch` only needs a `put` method. `start`
returns at once. When the peer is not the leader, it returns
`is_leader=False` and adds nothing to the log. The constructor starts
background threads for elections, heartbeats and applying entries.
`kill()` stops them and `killed()` reports whether that has happened.
Setting `peer.debug_log = True` logs the peer's state through the
`logging` module.

A peer reads its earlier state from the persister when it is created and
writes it back after each change. Its durable fields are held in a
`PersistentState`, which turns into bytes with `to_bytes()` and comes
back with `PersistentState.from_bytes(data)`. Malformed data raises
`ValueError`.

## Persisting state

```python
from raftshard.persister import Persister

store = Persister()
store.save(b"raft-state", b"snapshot")
assert store.raft_state_size() == 10
assert store.read_snapshot() == b"snapshot"

fresh = store.copy()     # an independent persister with the same contents
```

Passing `None` to `save` stores empty bytes.

## Sharding

A `Config` holds three things:

- a number, `num`;
- `shards`, a list of `N_SHARDS` (10) group ids;
- `groups`, which maps each group id to its server names.

Group 0 is the invalid group. The default `Config()` has no groups and
every shard on group 0. A key's shard is the first byte of its UTF-8
encoding modulo `N_SHARDS`, and 0 for the empty key:

```python
from raftshard.kv_client import key2shard

key2shard("")    # 0
key2shard("1")   # 9
```

`ctrler_client.Clerk(servers).query(-1)` fetches the latest configuration.
`kv_client.Clerk(ctrlers, make_end)` uses that configuration to route each
key. `make_end` turns a server name from the configuration into an end.
A new key/value clerk starts with the default configuration, so its first
request waits 100 ms and then asks the controller for the current one.

Clerk operations try each server in turn and pause 100 ms between rounds.
They keep retrying until a server answers as leader, or with a usable
result, so they block for as long as the service is unreachable.

## What the package does not do

- It has no shard controller server and no key/value server. The clerks
  only send requests, and something else must answer them.
- It has no network, RPC layer or process runner. Ends must be supplied by
  the caller.
- `Raft` does not take snapshots or trim its log. It always saves an
  empty snapshot alongside its state.