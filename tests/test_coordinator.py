from __future__ import annotations

import asyncio
import tempfile
import threading
import unittest
from pathlib import Path

from ssh_fb.blacklist import BlacklistFile
from ssh_fb.config import parse_config
from ssh_fb.coordinator import BanCoordinator
from ssh_fb.events import EventKind
from ssh_fb.firewall import EnforcementResult, Firewall
from ssh_fb.notifier import Notifier
from ssh_fb.store import BanStore

HOUR = 3600.0


def failed(ip: str) -> str:
    return f"Jan 30 10:15:24 web1 sshd[1234]: Failed password for root from {ip} port 52113 ssh2"


def accepted(ip: str) -> str:
    return f"Jan 30 10:15:25 web1 sshd[1240]: Accepted password for deploy from {ip} port 22 ssh2"


class FakeClock:
    def __init__(self, t: float = 100_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


class FakeFirewall(Firewall):
    name = "fake"

    def __init__(self, applied: bool = True) -> None:
        self.applied = applied
        self.blocked: list[str] = []
        self.unblocked: list[str] = []

    def block(self, address: str) -> EnforcementResult:
        self.blocked.append(address)
        return EnforcementResult(applied=self.applied, reason="ok" if self.applied else "command_failed")

    def unblock(self, address: str) -> EnforcementResult:
        self.unblocked.append(address)
        return EnforcementResult(applied=True)

    def is_active(self) -> bool:
        return True


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple] = []

    async def send(self, text: str) -> None:
        return None

    async def notify_login_success(self, ip, ip_info, server):
        self.calls.append(("success", ip))
        return True

    async def notify_login_failed(self, ip, ip_info, server, attempts, max_attempts):
        self.calls.append(("failed", ip, attempts, max_attempts))
        return True

    async def notify_ip_banned(self, ip, ip_info, server, duration, expires_at):
        self.calls.append(("banned", ip, duration, expires_at))
        return True


class FakeGeo:
    async def describe(self, address: str) -> str:
        return f"IP: {address}"


class ReadOnlyBlacklist(BlacklistFile):
    def save(self, bans) -> None:
        raise PermissionError("read-only file system")


class ThreadRecordingBlacklist(BlacklistFile):
    def __init__(self, path) -> None:
        super().__init__(path)
        self.threads: list[int] = []

    def save(self, bans) -> None:
        self.threads.append(threading.get_ident())
        super().save(bans)


class CoordinatorTestCase(unittest.IsolatedAsyncioTestCase):
    threshold = 3

    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.settings = parse_config(
            {
                "ssh_protection": {"max_failed_attempts": self.threshold, "ban_duration_hours": 24},
                "blacklist": {"file": str(Path(self._tmp.name) / "blacklist.txt")},
                "journal": {"enabled": False},
            }
        )
        self.clock = FakeClock()
        self.store = BanStore(self.threshold, clock=self.clock)
        self.blacklist = BlacklistFile(self.settings.blacklist.file)
        self.firewall = FakeFirewall()
        self.notifier = RecordingNotifier()
        self.coordinator = self.make_coordinator(self.blacklist, self.firewall)

    def make_coordinator(self, blacklist, firewall) -> BanCoordinator:
        return BanCoordinator(self.settings, self.store, blacklist, firewall, self.notifier, FakeGeo())

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def feed(self, *lines: str) -> int:
        async def source():
            for line in lines:
                yield line

        handled = await self.coordinator.run(source())
        await self.coordinator.drain()
        return handled


class TestFailedLogins(CoordinatorTestCase):
    async def test_third_failure_bans(self) -> None:
        ip = "10.0.0.1"
        d1 = await self.coordinator.handle_failed(ip)
        d2 = await self.coordinator.handle_failed(ip)
        d3 = await self.coordinator.handle_failed(ip)
        await self.coordinator.drain()

        self.assertEqual((d1.count, d1.banned), (1, False))
        self.assertEqual((d2.count, d2.banned), (2, False))
        self.assertEqual((d3.count, d3.banned), (3, True))
        self.assertEqual(d3.expires_at, self.clock.t + 24 * HOUR)
        self.assertTrue(self.store.is_banned(ip))
        self.assertEqual(self.firewall.blocked, [ip])
        self.assertEqual(set(self.blacklist.read()), {ip})

        failed_calls = [c for c in self.notifier.calls if c[0] == "failed"]
        self.assertEqual([c[2] for c in failed_calls], [1, 2, 3])
        self.assertTrue(all(c[3] == 3 for c in failed_calls))
        self.assertIn(("banned", ip, 24 * HOUR, self.clock.t + 24 * HOUR), self.notifier.calls)

    async def test_fourth_failure_is_rejected(self) -> None:
        ip = "10.0.0.1"
        for _ in range(3):
            await self.coordinator.handle_failed(ip)
        d4 = await self.coordinator.handle_failed(ip)
        await self.coordinator.drain()

        self.assertTrue(d4.rejected)
        self.assertEqual(d4.count, 3)
        self.assertEqual(self.store.failure_count(ip), 3)
        self.assertEqual(self.firewall.blocked, [ip])
        self.assertEqual(len([c for c in self.notifier.calls if c[0] == "failed"]), 3)

    async def test_block_failure_keeps_ban(self) -> None:
        firewall = FakeFirewall(applied=False)
        self.coordinator = self.make_coordinator(self.blacklist, firewall)
        for _ in range(3):
            await self.coordinator.handle_failed("10.0.0.9")
        await self.coordinator.drain()
        self.assertTrue(self.store.is_banned("10.0.0.9"))
        self.assertTrue(any(c[0] == "banned" for c in self.notifier.calls))

    async def test_persist_failure_keeps_ban_and_still_blocks(self) -> None:
        self.coordinator = self.make_coordinator(ReadOnlyBlacklist(self.settings.blacklist.file), self.firewall)
        for _ in range(3):
            await self.coordinator.handle_failed("10.0.0.8")
        self.assertTrue(self.store.is_banned("10.0.0.8"))
        self.assertEqual(self.firewall.blocked, ["10.0.0.8"])

    async def test_blacklist_written_off_the_event_loop(self) -> None:
        blacklist = ThreadRecordingBlacklist(self.settings.blacklist.file)
        self.coordinator = self.make_coordinator(blacklist, self.firewall)
        for _ in range(3):
            await self.coordinator.handle_failed("10.0.0.7")
        self.assertEqual(len(blacklist.threads), 1)
        self.assertNotEqual(blacklist.threads[0], threading.get_ident())
        self.assertEqual(set(blacklist.read()), {"10.0.0.7"})

    async def test_after_expiry_counting_starts_over(self) -> None:
        ip = "10.0.0.5"
        for _ in range(3):
            await self.coordinator.handle_failed(ip)
        self.clock.t += 24 * HOUR + 60
        d = await self.coordinator.handle_failed(ip)
        self.assertEqual((d.count, d.banned, d.rejected), (1, False, False))


class TestSuccessfulLogins(CoordinatorTestCase):
    threshold = 5

    async def test_success_does_not_reset_count(self) -> None:
        ip = "10.0.0.3"
        await self.coordinator.handle_failed(ip)
        await self.coordinator.handle_failed(ip)
        d = await self.coordinator.handle_success(ip)
        self.assertEqual(d.kind, EventKind.SUCCESS)
        self.assertEqual(d.count, 2)
        d = await self.coordinator.handle_failed(ip)
        self.assertEqual(d.count, 3)
        await self.coordinator.drain()
        self.assertIn(("success", ip), self.notifier.calls)


class TestRun(CoordinatorTestCase):
    async def test_run_consumes_lines_in_order(self) -> None:
        handled = await self.feed(
            "Jan 30 10:15:20 web1 CRON[1]: noise",
            failed("203.0.113.7"),
            accepted("192.0.2.50"),
            failed("203.0.113.7"),
            failed("203.0.113.7"),
            failed("203.0.113.7"),
        )
        self.assertEqual(handled, 5)
        self.assertTrue(self.store.is_banned("203.0.113.7"))
        self.assertEqual(self.firewall.blocked, ["203.0.113.7"])
        self.assertEqual(self.store.failure_count("203.0.113.7"), 3)

    async def test_run_honours_stop(self) -> None:
        stop = asyncio.Event()

        async def source():
            yield failed("203.0.113.8")
            stop.set()
            yield failed("203.0.113.8")
            yield failed("203.0.113.8")

        handled = await self.coordinator.run(source(), stop)
        await self.coordinator.drain()
        self.assertEqual(handled, 2)
        self.assertEqual(self.store.failure_count("203.0.113.8"), 2)
        self.assertEqual(self.firewall.blocked, [])


if __name__ == "__main__":
    unittest.main()
