import pytest

from raftshard.kv_common import Err, GetArgs, GetReply, PutAppendArgs, PutAppendReply


@pytest.mark.parametrize(
    "wire, member",
    [
        ("OK", Err.OK),
        ("ErrNoKey", Err.NO_KEY),
        ("ErrWrongGroup", Err.WRONG_GROUP),
        ("ErrWrongLeader", Err.WRONG_LEADER),
    ],
)
def test_err_wire_values(wire, member):
    assert Err(wire) is member
    assert Err(wire) == wire


def test_err_lookup_from_wire_string():
    assert Err("ErrWrongGroup") is Err.WRONG_GROUP
    assert Err("OK") is Err.OK


def test_err_rejects_unknown_string():
    with pytest.raises(ValueError):
        Err("ErrSomethingElse")


def test_reply_defaults():
    assert GetReply().err is None
    assert GetReply().value == ""
    assert PutAppendReply().err is None


def test_messages_carry_values():
    args = PutAppendArgs(key="k", value="v", op="Append")
    assert (args.key, args.value, args.op) == ("k", "v", "Append")
    assert GetArgs("k") == GetArgs(key="k")
    reply = GetReply(err=Err.NO_KEY, value="")
    assert reply.err in (Err.OK, Err.NO_KEY)