"""
Decision coordinator – turns auth events into ban decisions.

Per address:

  failed login, banned      -> warn, journal "banned_attempt", nothing else
  failed login, not banned  -> count it; at the threshold create the ban,
                               rewrite the blacklist, block, notify ban.
                               A failure notification goes out every time.
  successful login          -> notify success; counts are left alone

A failed block or blacklist write is logged. The in-memory ban stays in
place either way.

Notifications (with their geolocation lookup) run as background tasks so
a slow API never holds up the log stream. drain() waits for them.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, Coroutine, Protocol

from ssh_fb.blacklist import BlacklistFile
from ssh_fb.config import Settings
from ssh_fb.events import AuthEvent, EventKind, parse_line
from ssh_fb.firewall import Firewall
from ssh_fb.journal import EventJournal
from ssh_fb.notifier import Notifier
from ssh_fb.store import BanStore

logger = logging.getLogger("ssh_fb.coordinator")


class GeoDescriber(Protocol):
    async def describe(self, address: str) -> str: ...


@dataclass
class BanDecision:
    address: str
    kind: EventKind
    count: int = 0
    banned: bool = False
    expires_at: float | None = None
    rejected: bool = False


class BanCoordinator:
    def __init__(
        self,
        settings: Settings,
        store: BanStore,
        blacklist: BlacklistFile,
        firewall: Firewall,
        notifier: Notifier,
        geo: GeoDescriber,
        journal: EventJournal | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.blacklist = blacklist
        self.firewall = firewall
        self.notifier = notifier
        self.geo = geo
        self.journal = journal
        self.max_attempts = settings.ssh_protection.max_failed_attempts
        self.ban_duration = settings.ssh_protection.ban_duration_seconds
        self.server = settings.service.server_label
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc)

    async def drain(self) -> None:
        """Wait for all outstanding notification tasks."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _journal(self, ip: str, kind: str, meta: dict | None = None) -> None:
        if self.journal is not None:
            await self.journal.record(ip, kind, meta)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _notify_failed(self, ip: str, count: int) -> None:
        info = await self.geo.describe(ip)
        await self.notifier.notify_login_failed(ip, info, self.server, count, self.max_attempts)

    async def _notify_banned(self, ip: str, expires_at: float) -> None:
        info = await self.geo.describe(ip)
        await self.notifier.notify_ip_banned(ip, info, self.server, self.ban_duration, expires_at)

    async def _notify_success(self, ip: str) -> None:
        info = await self.geo.describe(ip)
        await self.notifier.notify_login_success(ip, info, self.server)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def _ban(self, ip: str) -> float:
        expires_at = self.store.create_ban(ip, self.ban_duration)

        try:
            await asyncio.to_thread(self.store.persist, self.blacklist)
        except OSError as exc:
            logger.error("op=save_blacklist ip=%s failed: %s", ip, exc)

        try:
            result = await asyncio.to_thread(self.firewall.block, ip)
            Firewall.require(result, address=ip, op="block")
        except Exception as exc:  # noqa: BLE001
            logger.error("op=block ip=%s failed: %s", ip, exc)
            applied = False
        else:
            applied = True

        logger.info(
            "IP %s banned for %.0fs (expires %s, firewall applied=%s)",
            ip, self.ban_duration, expires_at, applied,
        )
        await self._journal(ip, "ban", {"expires_at": expires_at, "applied": applied})
        self._spawn(self._notify_banned(ip, expires_at), name=f"notify-ban:{ip}")
        return expires_at

    async def handle_failed(self, ip: str) -> BanDecision:
        if self.store.is_banned(ip):
            logger.warning("Banned IP %s attempted to log in", ip)
            await self._journal(ip, "banned_attempt")
            return BanDecision(ip, EventKind.FAILED, count=self.store.failure_count(ip), rejected=True)

        count, reached = self.store.record_failure(ip)
        logger.warning("SSH login failed ip=%s attempts=%d max_attempts=%d", ip, count, self.max_attempts)
        await self._journal(ip, "failed_auth", {"attempts": count})

        decision = BanDecision(ip, EventKind.FAILED, count=count)
        if reached:
            decision.expires_at = await self._ban(ip)
            decision.banned = True

        self._spawn(self._notify_failed(ip, count), name=f"notify-failed:{ip}")
        return decision

    async def handle_success(self, ip: str) -> BanDecision:
        logger.info("SSH login succeeded ip=%s", ip)
        await self._journal(ip, "login")
        self._spawn(self._notify_success(ip), name=f"notify-success:{ip}")
        return BanDecision(ip, EventKind.SUCCESS, count=self.store.failure_count(ip))

    async def handle(self, event: AuthEvent) -> BanDecision:
        if event.kind is EventKind.FAILED:
            return await self.handle_failed(event.address)
        return await self.handle_success(event.address)

    async def run(self, source: AsyncIterable[str], stop: asyncio.Event | None = None) -> int:
        """Consume lines until the source ends or stop is set. Returns events handled."""
        handled = 0
        async for line in source:
            event = parse_line(line)
            if event is not None:
                await self.handle(event)
                handled += 1
            if stop is not None and stop.is_set():
                break
        return handled
