"""
Monitor – wires the ban engine together and runs it.

Tasks on one asyncio loop, all sharing one stop event:

  1. tailer -> coordinator   (main task; a TailerError ends the monitor)
  2. expiry sweeper          (every blacklist.cleanup_interval_hours)
  3. telegram command loop   (optional)
  4. status API              (optional, uvicorn in-process)

Setting the stop event (SIGINT/SIGTERM in main.py) ends every loop at its
next wait; outstanding notifications are drained before exit.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterable, Callable

from ssh_fb import __version__
from ssh_fb.blacklist import BlacklistFile
from ssh_fb.config import Settings
from ssh_fb.coordinator import BanCoordinator, GeoDescriber
from ssh_fb.errors import TailerError
from ssh_fb.firewall import Firewall, build_firewall
from ssh_fb.geoip import IPInfoClient, StaticGeo
from ssh_fb.journal import EventJournal
from ssh_fb.notifier import LogNotifier, Notifier, TelegramCommands, TelegramNotifier
from ssh_fb.store import BanStore
from ssh_fb.sweeper import ExpirySweeper
from ssh_fb.tailer import LogTailer
from ssh_fb.utils import fmt_ts

logger = logging.getLogger("ssh_fb.monitor")


def build_notifier(settings: Settings) -> Notifier:
    if settings.telegram.enabled:
        return TelegramNotifier(settings.telegram, settings.notifications)
    return LogNotifier(settings.notifications)


def build_geo(settings: Settings) -> IPInfoClient | StaticGeo:
    cfg = settings.ip_info
    if not cfg.enabled:
        return StaticGeo()
    return IPInfoClient(
        cfg.api_url,
        language=cfg.language,
        timeout=cfg.timeout,
        retry_count=cfg.retry_count,
        retry_interval=cfg.retry_interval,
    )


class Monitor:
    def __init__(
        self,
        settings: Settings,
        *,
        firewall: Firewall | None = None,
        notifier: Notifier | None = None,
        geo: GeoDescriber | None = None,
        journal: EventJournal | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.started_at = clock()
        sp = settings.ssh_protection

        self.store = BanStore(sp.max_failed_attempts, clock=clock)
        self.blacklist = BlacklistFile(settings.blacklist.file)
        fw = settings.firewall
        self.firewall = firewall or build_firewall(
            fw.backend, nft_table=fw.nft_table, nft_set=fw.nft_set, command_timeout=fw.command_timeout
        )
        self.notifier = notifier or build_notifier(settings)
        self.geo = geo or build_geo(settings)
        if journal is None and settings.journal.enabled:
            journal = EventJournal(settings.journal.db_path)
        self.journal = journal

        self.tailer = LogTailer(sp.ssh_log_file, poll_interval=sp.poll_interval, follow_rotation=sp.follow_rotation)
        self.coordinator = BanCoordinator(
            settings, self.store, self.blacklist, self.firewall, self.notifier, self.geo, self.journal
        )
        self.sweeper = ExpirySweeper(
            self.store,
            self.firewall,
            self.blacklist,
            interval=settings.blacklist.cleanup_interval_seconds,
            journal=self.journal,
        )

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def load_blacklist(self) -> int:
        """Seed the store from the blacklist file. OSError propagates."""
        bans = self.blacklist.load(
            self.settings.ssh_protection.ban_duration_seconds,
            renew=self.settings.blacklist.renew_on_load,
            clock=self.clock,
        )
        return self.store.restore(bans)

    # ------------------------------------------------------------------
    # Status (API + /status command)
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        sp = self.settings.ssh_protection
        return {
            "version": __version__,
            "uptime_seconds": round(self.clock() - self.started_at, 1),
            "log_file": sp.ssh_log_file,
            "max_failed_attempts": sp.max_failed_attempts,
            "ban_duration_hours": sp.ban_duration_hours,
            "cleanup_interval_hours": self.settings.blacklist.cleanup_interval_hours,
            "firewall_backend": self.firewall.name,
            "banned": len(self.store.list_banned()),
            "tracked": self.store.tracked_count(),
        }

    def status_text(self) -> str:
        s = self.status()
        return (
            "System status:\n"
            f"- running (v{s['version']}, up {int(s['uptime_seconds'])}s)\n"
            f"- watching {s['log_file']}\n"
            f"- firewall: {s['firewall_backend']}\n"
            f"- banned IPs: {s['banned']}\n"
            f"- tracked IPs: {s['tracked']}\n"
            f"- threshold: {s['max_failed_attempts']} failures, ban {s['ban_duration_hours']}h"
        )

    def bans(self) -> list[dict[str, Any]]:
        return [
            {
                "address": e.address,
                "expires_at": e.expires_at,
                "expires": fmt_ts(e.expires_at),
                "failures": e.failures,
            }
            for e in self.store.snapshot()
        ]

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _serve_api(self, stop: asyncio.Event) -> None:
        import uvicorn

        from ssh_fb.api import create_app

        cfg = self.settings.api
        server = uvicorn.Server(
            uvicorn.Config(create_app(self), host=cfg.host, port=cfg.port, log_level="warning")
        )
        server.install_signal_handlers = lambda: None  # signals belong to main.py

        async def serve() -> None:
            # uvicorn calls sys.exit() when startup fails, e.g. the port is taken.
            try:
                await server.serve()
            except SystemExit as exc:
                logger.error("op=api_serve host=%s port=%d failed: exit code %s", cfg.host, cfg.port, exc.code)

        serving = asyncio.create_task(serve(), name="api-serve")
        stopping = asyncio.create_task(stop.wait(), name="api-stop")
        await asyncio.wait({serving, stopping}, return_when=asyncio.FIRST_COMPLETED)
        server.should_exit = True
        stopping.cancel()
        await serving

    async def run(self, stop: asyncio.Event, source: AsyncIterable[str] | None = None) -> None:
        """Run until stop is set. Raises TailerError if the log cannot be read."""
        restored = self.load_blacklist()
        logger.info("SSH protection starting (v%s), %d ban(s) restored", __version__, restored)

        if not await asyncio.to_thread(self.firewall.is_active):
            logger.warning("Firewall backend %s is not active; bans will not be enforced", self.firewall.name)

        if self.journal is not None:
            await self.journal.init()

        background = [asyncio.create_task(self.sweeper.run(stop), name="sweeper")]
        if self.settings.telegram.enabled and self.settings.telegram.commands and isinstance(
            self.notifier, TelegramNotifier
        ):
            commands = TelegramCommands(self.notifier, self.status_text)
            background.append(asyncio.create_task(commands.run(stop), name="telegram-commands"))
        if self.settings.api.enabled:
            background.append(asyncio.create_task(self._serve_api(stop), name="api"))

        try:
            lines = source if source is not None else self.tailer.lines(stop)
            await self.coordinator.run(lines, stop)
        except TailerError as exc:
            logger.error("Log tailer failed: %s", exc)
            raise
        finally:
            stop.set()
            for task in background:
                if task.get_name() == "telegram-commands":
                    # Blocked in a long poll.
                    task.cancel()
            results = await asyncio.gather(*background, return_exceptions=True)
            for task, res in zip(background, results):
                if isinstance(res, Exception):
                    logger.error("Task %s ended with error: %s", task.get_name(), res)
            await self.coordinator.drain()
            await self.notifier.aclose()
            if hasattr(self.geo, "aclose"):
                await self.geo.aclose()
            logger.info("SSH protection stopped")
