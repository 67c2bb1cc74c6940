"""
Log tailer – follows the SSH auth log like ``tail -f``.

Starts at the current end of file (history is never replayed) and yields
each complete line as it is appended. An empty read is not an error: the
tailer waits ``poll_interval`` and tries again, forever, until the stop
event is set. Failing to open the file or a real read error raises
TailerError.

Rotation (file replaced or truncated) is only followed when
``follow_rotation`` is on; by default the tailer keeps reading the file it
opened first.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import AsyncIterator, TextIO

from ssh_fb.errors import TailerError
from ssh_fb.utils import wait_for_stop

logger = logging.getLogger("ssh_fb.tailer")

POLL_INTERVAL = 0.1  # seconds between reads at end of file


class LogTailer:
    def __init__(
        self,
        path: str | os.PathLike[str],
        poll_interval: float = POLL_INTERVAL,
        follow_rotation: bool = False,
    ) -> None:
        self.path = os.fspath(path)
        self.poll_interval = poll_interval
        self.follow_rotation = follow_rotation

    def _open(self) -> TextIO:
        try:
            return open(self.path, "r", encoding="utf-8", errors="replace")
        except OSError as exc:
            raise TailerError(f"cannot open log file {self.path}: {exc}") from exc

    def _rotated(self, fh: TextIO, inode: int) -> bool:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            # Mid-rotation: old file moved away, new one not created yet.
            return False
        except OSError as exc:
            raise TailerError(f"cannot stat log file {self.path}: {exc}") from exc
        return st.st_ino != inode or st.st_size < fh.tell()

    async def lines(self, stop: asyncio.Event | None = None) -> AsyncIterator[str]:
        """Yield complete lines (without the trailing newline) until stop is set."""
        fh = self._open()
        try:
            fh.seek(0, os.SEEK_END)
            inode = os.fstat(fh.fileno()).st_ino
            logger.info("Tailing %s from offset %d", self.path, fh.tell())
            pending = ""

            while stop is None or not stop.is_set():
                try:
                    chunk = fh.readline()
                except OSError as exc:
                    raise TailerError(f"read error on {self.path}: {exc}") from exc

                if chunk:
                    pending += chunk
                    if pending.endswith("\n"):
                        line, pending = pending.rstrip("\r\n"), ""
                        yield line
                    continue

                if self.follow_rotation and self._rotated(fh, inode):
                    logger.info("Log rotation detected, reopening %s", self.path)
                    fh.close()
                    fh = self._open()
                    inode = os.fstat(fh.fileno()).st_ino
                    pending = ""
                    continue

                if await wait_for_stop(stop, self.poll_interval):
                    break
        finally:
            fh.close()
        logger.info("Tailer for %s stopped", self.path)
