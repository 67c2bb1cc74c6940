from __future__ import annotations

import threading
import unittest

from ssh_fb.store import BanStore

HOUR = 3600.0


class FakeClock:
    def __init__(self, t: float = 1_000_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class ListSink:
    def __init__(self) -> None:
        self.saved: list[dict[str, float]] = []

    def save(self, bans) -> None:
        self.saved.append(dict(bans))


class TestBanStore(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.store = BanStore(threshold=3, clock=self.clock)

    def test_threshold_reached_on_third_failure(self) -> None:
        ip = "10.0.0.1"
        self.assertEqual(self.store.record_failure(ip), (1, False))
        self.assertEqual(self.store.record_failure(ip), (2, False))
        self.assertEqual(self.store.record_failure(ip), (3, True))

    def test_banned_address_is_not_counted(self) -> None:
        ip = "10.0.0.1"
        for _ in range(3):
            self.store.record_failure(ip)
        self.store.create_ban(ip, 24 * HOUR)
        self.assertTrue(self.store.is_banned(ip))
        self.assertEqual(self.store.record_failure(ip), (3, False))
        self.assertEqual(self.store.failure_count(ip), 3)

    def test_counts_are_per_address(self) -> None:
        self.store.record_failure("10.0.0.1")
        self.store.record_failure("10.0.0.1")
        self.assertEqual(self.store.record_failure("10.0.0.2"), (1, False))

    def test_ban_holds_until_expiry(self) -> None:
        ip = "10.0.0.2"
        self.store.record_failure(ip)
        expires_at = self.store.create_ban(ip, 24 * HOUR)
        self.assertEqual(expires_at, self.clock.t + 24 * HOUR)

        self.clock.advance(23 * HOUR + 59 * 60)
        self.assertTrue(self.store.is_banned(ip))

        self.clock.advance(2 * 60)
        self.assertFalse(self.store.is_banned(ip))
        self.assertIsNone(self.store.expires_at(ip))
        self.assertEqual(self.store.failure_count(ip), 0)
        self.assertNotIn(ip, self.store.list_banned())

    def test_is_banned_false_exactly_at_expiry(self) -> None:
        ip = "10.0.0.3"
        self.store.create_ban(ip, 60)
        self.clock.advance(60)
        self.assertFalse(self.store.is_banned(ip))

    def test_list_banned_drops_expired(self) -> None:
        self.store.create_ban("10.0.0.1", 60)
        self.store.create_ban("10.0.0.2", 600)
        self.clock.advance(120)
        self.assertEqual(self.store.list_banned(), {"10.0.0.2"})
        self.assertIsNone(self.store.expires_at("10.0.0.1"))

    def test_counting_restarts_after_lazy_expiry(self) -> None:
        ip = "10.0.0.4"
        for _ in range(3):
            self.store.record_failure(ip)
        self.store.create_ban(ip, 60)
        self.clock.advance(61)
        self.assertEqual(self.store.record_failure(ip), (1, False))

    def test_lazily_expired_address_is_handed_to_sweep(self) -> None:
        ip = "10.0.0.5"
        self.store.create_ban(ip, 60)
        self.clock.advance(61)
        self.assertFalse(self.store.is_banned(ip))
        self.assertEqual(self.store.sweep_expired(), {ip})
        self.assertEqual(self.store.sweep_expired(), set())

    def test_reban_clears_pending_unblock(self) -> None:
        ip = "10.0.0.6"
        self.store.create_ban(ip, 60)
        self.clock.advance(61)
        self.assertFalse(self.store.is_banned(ip))
        self.store.create_ban(ip, 600)
        self.assertEqual(self.store.sweep_expired(), set())
        self.assertTrue(self.store.is_banned(ip))

    def test_sweep_expired_only_removes_expired(self) -> None:
        for i in range(5):
            self.store.create_ban(f"10.0.1.{i}", 60 if i < 2 else 600)
            self.store.record_failure(f"10.0.1.{i}")
        self.clock.advance(120)
        self.assertEqual(self.store.sweep_expired(), {"10.0.1.0", "10.0.1.1"})
        self.assertEqual(self.store.list_banned(), {"10.0.1.2", "10.0.1.3", "10.0.1.4"})
        self.assertEqual(self.store.failure_count("10.0.1.0"), 0)
        self.assertEqual(self.store.failure_count("10.0.1.2"), 1)

    def test_sweep_with_explicit_now(self) -> None:
        self.store.create_ban("10.0.0.7", 60)
        self.assertEqual(self.store.sweep_expired(now=self.clock.t + 30), set())
        self.assertEqual(self.store.sweep_expired(now=self.clock.t + 60), {"10.0.0.7"})

    def test_restore_and_persist(self) -> None:
        n = self.store.restore({"192.0.2.1": self.clock.t + 10, "192.0.2.2": self.clock.t + 20})
        self.assertEqual(n, 2)
        sink = ListSink()
        self.store.persist(sink)
        self.assertEqual(set(sink.saved[0]), {"192.0.2.1", "192.0.2.2"})

    def test_snapshot_sorted_by_expiry(self) -> None:
        self.store.create_ban("192.0.2.9", 500)
        self.store.create_ban("192.0.2.8", 100)
        self.assertEqual([e.address for e in self.store.snapshot()], ["192.0.2.8", "192.0.2.9"])

    def test_rejects_bad_threshold(self) -> None:
        with self.assertRaises(ValueError):
            BanStore(threshold=0)

    def test_concurrent_failures_are_all_counted(self) -> None:
        store = BanStore(threshold=10_000, clock=self.clock)

        def hammer() -> None:
            for _ in range(500):
                store.record_failure("10.9.9.9")
                store.is_banned("10.9.9.9")

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(store.failure_count("10.9.9.9"), 4000)


if __name__ == "__main__":
    unittest.main()
