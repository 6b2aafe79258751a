import pytest

from raftshard import ctrler_client, kv_client
from raftshard.ctrler_common import N_SHARDS, Config, QueryReply
from raftshard.kv_client import Clerk, key2shard, nrand
from raftshard.kv_common import Err, GetArgs, GetReply, PutAppendArgs, PutAppendReply


class CtrlerEnd:
    def __init__(self, configs):
        self._configs = list(configs)
        self.calls = 0

    def call(self, method, args):
        self.calls += 1
        assert method == "ShardCtrler.Query"
        if len(self._configs) > 1:
            return QueryReply(config=self._configs.pop(0))
        return QueryReply(config=self._configs[0])


class ServerEnd:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def call(self, method, args):
        self.calls.append((method, args))
        return self.handler(method, args)


@pytest.fixture(autouse=True)
def fast_retry(monkeypatch):
    monkeypatch.setattr(kv_client, "RETRY_INTERVAL", 0)
    monkeypatch.setattr(ctrler_client, "RETRY_INTERVAL", 0)


def one_group(gid, names):
    return Config(num=1, shards=[gid] * N_SHARDS, groups={gid: list(names)})


def make_clerk(configs, ends):
    ctl = CtrlerEnd(configs)
    return Clerk([ctl], lambda name: ends[name]), ctl


def test_key2shard_empty_key():
    assert key2shard("") == 0


def test_key2shard_uses_first_byte():
    assert key2shard("0") == 8
    assert key2shard("abc") == key2shard("a")


def test_key2shard_digits_cover_all_shards():
    shards = {key2shard(str(i)) for i in range(10)}
    assert shards == set(range(N_SHARDS))


def test_nrand_range():
    assert all(0 <= nrand() < (1 << 62) for _ in range(20))


def test_get_returns_value():
    srv = ServerEnd(lambda m, a: GetReply(err=Err.OK, value="v1"))
    ck, ctl = make_clerk([one_group(100, ["s1"])], {"s1": srv})
    assert ck.get("k") == "v1"
    assert srv.calls == [("ShardKV.Get", GetArgs(key="k"))]
    assert ctl.calls == 1


def test_get_missing_key_returns_empty():
    srv = ServerEnd(lambda m, a: GetReply(err=Err.NO_KEY))
    ck, _ = make_clerk([one_group(100, ["s1"])], {"s1": srv})
    assert ck.get("nothing") == ""


def test_get_tries_next_server_after_wrong_leader():
    follower = ServerEnd(lambda m, a: GetReply(err=Err.WRONG_LEADER))
    lost = ServerEnd(lambda m, a: None)
    leader = ServerEnd(lambda m, a: GetReply(err=Err.OK, value="v"))
    ends = {"s1": follower, "s2": lost, "s3": leader}
    ck, ctl = make_clerk([one_group(100, ["s1", "s2", "s3"])], ends)
    assert ck.get("k") == "v"
    assert len(follower.calls) == 1
    assert len(lost.calls) == 1
    assert ctl.calls == 1


def test_get_refreshes_config_after_wrong_group():
    old = ServerEnd(lambda m, a: GetReply(err=Err.WRONG_GROUP))
    never = ServerEnd(lambda m, a: GetReply(err=Err.OK, value="bad"))
    new = ServerEnd(lambda m, a: GetReply(err=Err.OK, value="good"))
    configs = [one_group(100, ["old", "never"]), one_group(101, ["new"])]
    ck, ctl = make_clerk(configs, {"old": old, "never": never, "new": new})
    assert ck.get("k") == "good"
    assert never.calls == []
    assert ctl.calls == 2


def test_put_sends_put_op():
    srv = ServerEnd(lambda m, a: PutAppendReply(err=Err.OK))
    ck, _ = make_clerk([one_group(100, ["s1"])], {"s1": srv})
    ck.put("k", "v")
    assert srv.calls == [("ShardKV.PutAppend", PutAppendArgs(key="k", value="v", op="Put"))]


def test_append_sends_append_op():
    srv = ServerEnd(lambda m, a: PutAppendReply(err=Err.OK))
    ck, _ = make_clerk([one_group(100, ["s1"])], {"s1": srv})
    ck.append("k", "x")
    assert srv.calls[-1][1].op == "Append"
    assert srv.calls[-1][1].value == "x"


def test_put_append_retries_until_ok():
    replies = [PutAppendReply(err=Err.WRONG_LEADER), None, PutAppendReply(err=Err.OK)]
    srv = ServerEnd(lambda m, a: replies.pop(0))
    ck, ctl = make_clerk([one_group(100, ["s1"])], {"s1": srv})
    ck.put_append("k", "v", "Put")
    assert len(srv.calls) == 3
    assert replies == []
    assert ctl.calls == 3


def test_routes_to_group_owning_shard():
    shards = [100] * N_SHARDS
    shards[key2shard("b")] = 101
    cfg = Config(num=2, shards=shards, groups={100: ["a1"], 101: ["b1"]})
    a = ServerEnd(lambda m, args: GetReply(err=Err.OK, value="from-a"))
    b = ServerEnd(lambda m, args: GetReply(err=Err.OK, value="from-b"))
    ck, _ = make_clerk([cfg], {"a1": a, "b1": b})
    assert ck.get("b") == "from-b"
    assert a.calls == []