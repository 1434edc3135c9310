from __future__ import annotations

import threading
import time

import pytest

from quorumlock import AcquireReply, FencingValidator, Lock, StaleFencingToken, TokenGenerator


def test_tokens_unique_across_generators_and_threads():
    generators = [TokenGenerator() for _ in range(4)]
    per_thread = 12500
    results = []
    guard = threading.Lock()

    def produce(generator):
        tokens = [generator.next() for _ in range(per_thread)]
        with guard:
            results.extend(tokens)

    threads = [threading.Thread(target=produce, args=(generators[i % 4],)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 100000
    assert len(set(results)) == 100000


def test_generators_with_same_clock_still_differ():
    a, b = TokenGenerator(), TokenGenerator()
    assert a.node_id != b.node_id
    assert a.next().split("-")[0] != b.next().split("-")[0]


def test_same_node_id_and_frozen_clock_still_differ(monkeypatch):
    monkeypatch.setattr(time, "time_ns", lambda: 1234)
    a, b = TokenGenerator("node"), TokenGenerator("node")
    tokens = [a.next(), b.next(), a.next(), b.next()]
    assert len(set(tokens)) == 4
    assert all("-4d2-" in token for token in tokens)


def test_node_id_prefix():
    generator = TokenGenerator(node_id="worker7")
    token = generator()
    assert token.startswith("worker7.")
    assert generator.node_id == "worker7"
    with pytest.raises(ValueError):
        TokenGenerator(node_id="")


def test_acquire_reply_truthiness():
    assert AcquireReply(True, 3)
    assert not AcquireReply(False)


def test_lock_validity_window():
    lock = Lock("orders", "tok", 500, acquired_at=10.0)
    assert lock.expires_at == 10.5
    assert lock.is_valid(now=10.4)
    assert not lock.is_valid(now=10.5)
    assert lock.remaining_ms(now=10.25) == 250
    assert lock.remaining_ms(now=11.0) == 0


def test_lock_is_immutable():
    lock = Lock("orders", "tok", 500, acquired_at=time.monotonic())
    with pytest.raises(AttributeError):
        lock.token = "other"


def test_fencing_validator_rejects_stale_tokens():
    validator = FencingValidator()
    validator.check("ledger", 5)
    validator.check("ledger", 6)
    validator.check("other", 1)

    with pytest.raises(StaleFencingToken) as excinfo:
        validator.check("ledger", 6)
    assert excinfo.value.last_seen == 6
    with pytest.raises(StaleFencingToken):
        validator.check("ledger", 2)
    with pytest.raises(StaleFencingToken):
        validator.check("ledger", None)
    assert validator.last_seen("ledger") == 6
