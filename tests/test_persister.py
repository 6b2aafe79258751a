import threading

from raftshard.persister import Persister


def test_new_persister_is_empty():
    ps = Persister()
    assert ps.read_raft_state() == b""
    assert ps.read_snapshot() == b""
    assert ps.raft_state_size() == 0
    assert ps.snapshot_size() == 0


def test_save_and_read_round_trip():
    ps = Persister()
    ps.save(b"state-bytes", b"snap")
    assert ps.read_raft_state() == b"state-bytes"
    assert ps.read_snapshot() == b"snap"
    assert ps.raft_state_size() == len(b"state-bytes")
    assert ps.snapshot_size() == len(b"snap")


def test_none_snapshot_reads_back_empty():
    ps = Persister()
    ps.save(b"abc", None)
    assert ps.read_snapshot() == b""
    assert ps.snapshot_size() == 0
    assert ps.read_raft_state() == b"abc"


def test_save_copies_mutable_input():
    ps = Persister()
    state = bytearray(b"hello")
    snap = bytearray(b"world")
    ps.save(state, snap)
    state[0] = ord("j")
    snap[0] = ord("W")
    assert ps.read_raft_state() == b"hello"
    assert ps.read_snapshot() == b"world"


def test_copy_is_independent_of_original():
    ps = Persister()
    ps.save(b"one", b"snap-one")
    dup = ps.copy()
    assert dup.read_raft_state() == b"one"
    assert dup.read_snapshot() == b"snap-one"
    dup.save(b"two", b"snap-two")
    assert ps.read_raft_state() == b"one"
    assert ps.read_snapshot() == b"snap-one"
    ps.save(b"three", None)
    assert dup.read_raft_state() == b"two"


def test_later_save_replaces_both_parts():
    ps = Persister()
    ps.save(b"a" * 10, b"b" * 5)
    ps.save(b"c", None)
    assert ps.raft_state_size() == 1
    assert ps.snapshot_size() == 0


def test_concurrent_saves_stay_consistent():
    ps = Persister()

    def writer(n):
        for _ in range(200):
            ps.save(bytes([n]) * n, bytes([n]) * (2 * n))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(1, 9)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    state = ps.read_raft_state()
    snap = ps.read_snapshot()
    n = len(state)
    assert 1 <= n <= 8
    assert state == bytes([n]) * n
    assert snap == bytes([n]) * (2 * n)