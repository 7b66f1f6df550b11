"""Tests for locks module."""

import threading
import time

from cherrypick_bot.locks import LockRegistry
from cherrypick_bot.models import CherryPickRequest


def _request(branch: str = "stage") -> CherryPickRequest:
    return CherryPickRequest(org="foo", repo="bar", pr_number=2, target_branch=branch)


def test_same_key_is_serialized():
    """Test two holders of one key never overlap."""
    locks = LockRegistry()
    active = 0
    overlaps = []
    guard = threading.Lock()

    def work():
        nonlocal active
        with locks.hold(_request()):
            with guard:
                active += 1
                overlaps.append(active)
            time.sleep(0.05)
            with guard:
                active -= 1

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert max(overlaps) == 1


def test_different_keys_run_in_parallel():
    """Test holding one key does not block another."""
    locks = LockRegistry()
    entered = threading.Event()

    with locks.hold(_request("stage")):
        def other():
            with locks.hold(_request("release-1.5")):
                entered.set()

        t = threading.Thread(target=other)
        t.start()
        assert entered.wait(timeout=2)
        t.join()


def test_entries_are_evicted_when_released():
    """Test the registry only holds keys in flight."""
    locks = LockRegistry()
    with locks.hold(_request("stage")):
        with locks.hold(_request("release-1.5")):
            assert len(locks) == 2
        assert len(locks) == 1
    assert len(locks) == 0


def test_waiter_keeps_entry_alive():
    """Test a waiting request reuses the entry instead of creating a new lock."""
    locks = LockRegistry()
    first = locks.acquire(_request())
    acquired = []

    def waiter():
        guard = locks.acquire(_request())
        acquired.append(guard)
        locks.release(guard)

    t = threading.Thread(target=waiter)
    t.start()
    time.sleep(0.05)
    assert acquired == []
    assert len(locks) == 1

    locks.release(first)
    t.join(timeout=2)

    assert acquired[0].entry is first.entry
    assert len(locks) == 0


def test_lock_released_on_exception():
    """Test an exception inside hold() still frees the key."""
    locks = LockRegistry()
    try:
        with locks.hold(_request()):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert len(locks) == 0
    with locks.hold(_request()):
        pass
