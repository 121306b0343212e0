"""Unit tests for the pending confirmation store."""

from __future__ import annotations

import threading

from backend.src.models.reflection import ReflectionVerdict
from backend.src.services.pending_confirmations import (
    PendingConfirmation,
    PendingConfirmationStore,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def entry(path: str = "a.md") -> PendingConfirmation:
    return PendingConfirmation(
        tool_name="obsidian_delete_file",
        arguments={"filepath": path},
        verdict=ReflectionVerdict(needs_user_confirmation=True, reason="delete"),
    )


class TestPendingConfirmationStore:
    def test_get_returns_stored_entry_unchanged(self) -> None:
        store = PendingConfirmationStore()
        stored = entry()

        store.set("k1", stored)

        assert store.get("k1") == stored
        assert "k1" in store
        assert len(store) == 1

    def test_pop_consumes_entry(self) -> None:
        store = PendingConfirmationStore()
        store.set("k1", entry())

        assert store.pop("k1") is not None
        assert store.pop("k1") is None
        assert store.get("k1") is None

    def test_remove_reports_whether_key_existed(self) -> None:
        store = PendingConfirmationStore()
        store.set("k1", entry())

        assert store.remove("k1") is True
        assert store.remove("k1") is False

    def test_set_overwrites_same_key(self) -> None:
        store = PendingConfirmationStore()
        store.set("k1", entry("a.md"))
        store.set("k1", entry("b.md"))

        assert store.get("k1").arguments == {"filepath": "b.md"}
        assert len(store) == 1

    def test_entries_expire_after_ttl(self) -> None:
        clock = FakeClock()
        store = PendingConfirmationStore(ttl_seconds=60, clock=clock)
        store.set("old", entry())
        clock.now = 30
        store.set("new", entry())

        clock.now = 60
        assert store.get("old") is None
        assert store.get("new") is not None

        clock.now = 90
        assert len(store) == 0

    def test_zero_ttl_never_expires(self) -> None:
        clock = FakeClock()
        store = PendingConfirmationStore(ttl_seconds=0, clock=clock)
        store.set("k1", entry())

        clock.now = 10**9

        assert store.get("k1") is not None

    def test_concurrent_pops_hand_out_entry_once(self) -> None:
        store = PendingConfirmationStore()
        store.set("k1", entry())
        winners = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            if store.pop("k1") is not None:
                winners.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert winners == [1]
