"""
Notification channel – Telegram Bot API over httpx.

Three message kinds: login success, login failure (with attempt counts)
and ban created (with duration and unban time). Each kind can be turned
off and carries its own str.format template.

Sends are fire-and-forget from the ban engine's point of view: a failed
send is logged with the address and kind, never raised, never retried.

TelegramCommands answers /start, /status, /test and /help from a
getUpdates long-poll loop. Only the configured chat gets answers.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from ssh_fb.config import NotificationsConfig, TelegramConfig
from ssh_fb.errors import NotificationError
from ssh_fb.utils import fmt_hours, fmt_ts, wait_for_stop

logger = logging.getLogger("ssh_fb.notifier")


class Notifier:
    """Formats the three message kinds and hands them to send()."""

    def __init__(self, notifications: NotificationsConfig | None = None) -> None:
        self.notifications = notifications or NotificationsConfig()

    async def send(self, text: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None

    async def _deliver(self, kind: str, ip: str, text: str) -> bool:
        try:
            await self.send(text)
        except NotificationError as exc:
            logger.warning("op=notify_%s ip=%s failed: %s", kind, ip, exc)
            return False
        return True

    async def notify_login_success(self, ip: str, ip_info: str, server: str) -> bool:
        cfg = self.notifications.login_success
        if not cfg.enabled:
            return False
        text = cfg.template.format(time=fmt_ts(time.time()), ip=ip, ip_info=ip_info, server=server)
        return await self._deliver("login_success", ip, text)

    async def notify_login_failed(
        self, ip: str, ip_info: str, server: str, attempts: int, max_attempts: int
    ) -> bool:
        cfg = self.notifications.login_failed
        if not cfg.enabled:
            return False
        text = cfg.template.format(
            time=fmt_ts(time.time()),
            ip=ip,
            ip_info=ip_info,
            server=server,
            attempts=attempts,
            max_attempts=max_attempts,
        )
        return await self._deliver("login_failed", ip, text)

    async def notify_ip_banned(
        self, ip: str, ip_info: str, server: str, duration: float, expires_at: float
    ) -> bool:
        cfg = self.notifications.ip_banned
        if not cfg.enabled:
            return False
        text = cfg.template.format(
            time=fmt_ts(time.time()),
            ip=ip,
            ip_info=ip_info,
            server=server,
            duration=fmt_hours(duration),
            expire_time=fmt_ts(expires_at),
        )
        return await self._deliver("ip_banned", ip, text)

    async def send_test_messages(self) -> None:
        """Send one sample of each kind. Raises NotificationError on the first failure."""
        now = time.time()
        await self.send(
            self.notifications.login_success.template.format(
                time=fmt_ts(now), ip="192.0.2.1", ip_info="IP: 192.0.2.1\nLocation: test", server="test server"
            )
        )
        await self.send(
            self.notifications.login_failed.template.format(
                time=fmt_ts(now), ip="192.0.2.2", ip_info="IP: 192.0.2.2\nLocation: test",
                server="test server", attempts=3, max_attempts=5,
            )
        )
        await self.send(
            self.notifications.ip_banned.template.format(
                time=fmt_ts(now), ip="192.0.2.3", ip_info="IP: 192.0.2.3\nLocation: test",
                server="test server", duration="24", expire_time=fmt_ts(now + 86400),
            )
        )


class LogNotifier(Notifier):
    """Used when Telegram is disabled: messages only go to the log."""

    async def send(self, text: str) -> None:
        logger.info("[notify] %s", text.replace("\n", " | "))


class TelegramNotifier(Notifier):
    def __init__(
        self,
        cfg: TelegramConfig,
        notifications: NotificationsConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(notifications)
        self.chat_id = cfg.chat_id
        self._base = f"{cfg.api_url.rstrip('/')}/bot{cfg.bot_token}"
        self._client = client or httpx.AsyncClient(timeout=cfg.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, payload: dict[str, Any], timeout: float | None = None) -> Any:
        kwargs: dict[str, Any] = {"json": payload}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            r = await self._client.post(f"{self._base}/{method}", **kwargs)
            data = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise NotificationError(f"telegram {method} failed: {exc}") from exc
        if not isinstance(data, dict) or not data.get("ok"):
            desc = data.get("description") if isinstance(data, dict) else r.text[:200]
            raise NotificationError(f"telegram {method} rejected (HTTP {r.status_code}): {desc}")
        return data.get("result")

    async def send(self, text: str) -> None:
        await self.send_to(self.chat_id, text)

    async def send_to(self, chat_id: int, text: str) -> None:
        await self.call("sendMessage", {"chat_id": chat_id, "text": text})


HELP_TEXT = (
    "SSH protection commands:\n"
    "/start - getting started\n"
    "/status - show system status\n"
    "/test - send test notifications\n"
    "/help - show this help"
)
START_TEXT = (
    "Welcome to the SSH protection service!\n"
    "Available commands:\n"
    "/status - show system status\n"
    "/test - send test notifications\n"
    "/help - show this help"
)


class TelegramCommands:
    """Long-polls getUpdates and answers bot commands."""

    def __init__(
        self,
        notifier: TelegramNotifier,
        status: Callable[[], str],
        poll_timeout: int = 60,
        error_backoff: float = 5.0,
    ) -> None:
        self.notifier = notifier
        self.status = status
        self.poll_timeout = poll_timeout
        self.error_backoff = error_backoff
        self._offset = 0
        self._handlers: dict[str, Callable[[], Awaitable[str]]] = {
            "start": self._cmd_start,
            "status": self._cmd_status,
            "test": self._cmd_test,
            "help": self._cmd_help,
        }

    async def _cmd_start(self) -> str:
        return START_TEXT

    async def _cmd_help(self) -> str:
        return HELP_TEXT

    async def _cmd_status(self) -> str:
        return self.status()

    async def _cmd_test(self) -> str:
        try:
            await self.notifier.send_test_messages()
        except NotificationError as exc:
            return f"Test failed: {exc}"
        return "Test notifications sent, please check that they arrived"

    async def handle_update(self, update: dict[str, Any]) -> str | None:
        """Answer one update. Returns the reply text, or None if it was not a command."""
        message = update.get("message") or {}
        text = str(message.get("text") or "")
        chat_id = (message.get("chat") or {}).get("id")
        if not text.startswith("/") or chat_id is None:
            return None
        if chat_id != self.notifier.chat_id:
            logger.warning("Ignoring command %r from unknown chat %s", text.split()[0], chat_id)
            return None

        command = text.split()[0][1:].split("@", 1)[0].lower()
        handler = self._handlers.get(command)
        reply = await handler() if handler else "Unknown command, use /help to list commands"
        try:
            await self.notifier.send_to(chat_id, reply)
        except NotificationError as exc:
            logger.error("op=command_reply command=%s failed: %s", command, exc)
        return reply

    async def poll_once(self) -> int:
        updates = await self.notifier.call(
            "getUpdates",
            {"offset": self._offset, "timeout": self.poll_timeout},
            timeout=self.poll_timeout + 10,
        )
        for update in updates or []:
            self._offset = max(self._offset, int(update.get("update_id", 0)) + 1)
            await self.handle_update(update)
        return len(updates or [])

    async def run(self, stop: asyncio.Event) -> None:
        logger.info("Telegram command loop started")
        while not stop.is_set():
            try:
                await self.poll_once()
            except NotificationError as exc:
                logger.warning("op=telegram_poll failed: %s", exc)
                if await wait_for_stop(stop, self.error_backoff):
                    break
        logger.info("Telegram command loop stopped")
