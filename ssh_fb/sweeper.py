"""
Expiry sweeper – periodic background task that lifts expired bans.

Each tick removes expired bans from the store (plus any the store already
dropped lazily) and asks the firewall to unblock every one of them. A
failed unblock is logged and the sweep moves on to the next address; the
bookkeeping is gone either way. This is the only place unblock() is
called.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ssh_fb.blacklist import BlacklistFile
from ssh_fb.firewall import Firewall
from ssh_fb.journal import EventJournal
from ssh_fb.store import BanStore
from ssh_fb.utils import wait_for_stop

logger = logging.getLogger("ssh_fb.sweeper")


@dataclass
class SweepResult:
    expired: list[str] = field(default_factory=list)
    unblocked: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class ExpirySweeper:
    def __init__(
        self,
        store: BanStore,
        firewall: Firewall,
        blacklist: BlacklistFile | None = None,
        interval: float = 3600.0,
        journal: EventJournal | None = None,
    ) -> None:
        self.store = store
        self.firewall = firewall
        self.blacklist = blacklist
        self.interval = interval
        self.journal = journal

    async def _unblock(self, ip: str) -> bool:
        try:
            result = await asyncio.to_thread(self.firewall.unblock, ip)
        except Exception as exc:  # noqa: BLE001
            logger.error("op=unblock ip=%s failed: %s", ip, exc)
            return False
        if not result.applied:
            logger.error("op=unblock ip=%s failed: %s", ip, result.stderr or result.reason)
            return False
        logger.info("IP %s unbanned", ip)
        return True

    async def sweep_once(self, now: float | None = None) -> SweepResult:
        result = SweepResult(expired=sorted(self.store.sweep_expired(now)))
        for ip in result.expired:
            if await self._unblock(ip):
                result.unblocked.append(ip)
            else:
                result.failed.append(ip)
            if self.journal is not None:
                await self.journal.record(ip, "unban", {"applied": ip in result.unblocked})

        if result.expired and self.blacklist is not None:
            try:
                await asyncio.to_thread(self.store.persist, self.blacklist)
            except OSError as exc:
                logger.error("op=save_blacklist path=%s failed: %s", self.blacklist.path, exc)

        if result.expired:
            logger.info(
                "Sweep done: %d expired, %d unblocked, %d failed",
                len(result.expired), len(result.unblocked), len(result.failed),
            )
        return result

    async def run(self, stop: asyncio.Event) -> None:
        logger.info("Expiry sweeper started (every %.0fs)", self.interval)
        while not await wait_for_stop(stop, self.interval):
            try:
                await self.sweep_once()
            except Exception:  # noqa: BLE001
                logger.exception("Sweeper tick failed")
        logger.info("Expiry sweeper stopped")
