"""
Blacklist file – durable copy of the banned address set.

One entry per line:

    203.0.113.7 1767225600
    198.51.100.4

The second field is the ban expiry (epoch seconds). Older files carry only
the address. The file is rewritten in full on every change; the write goes
to a temp file in the same directory and is moved into place with
os.replace, so a crash never leaves a half-written list behind.
"""
from __future__ import annotations

import ipaddress
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Mapping

logger = logging.getLogger("ssh_fb.blacklist")


class BlacklistFile:
    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def read(self) -> dict[str, float | None]:
        """Parse the file into address -> persisted expiry (None if absent).

        A missing file is created empty, like the first run of the service.
        """
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch()
            return {}

        entries: dict[str, float | None] = {}
        with self.path.open("r", encoding="utf-8") as fh:
            for lineno, raw in enumerate(fh, start=1):
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                fields = line.split()
                ip = fields[0]
                try:
                    ipaddress.ip_address(ip)
                except ValueError:
                    logger.warning("Skipping bad blacklist entry %r (%s:%d)", ip, self.path, lineno)
                    continue
                expiry: float | None = None
                if len(fields) > 1:
                    try:
                        expiry = float(fields[1])
                    except ValueError:
                        logger.warning("Ignoring bad expiry for %s (%s:%d)", ip, self.path, lineno)
                entries[ip] = expiry
        return entries

    def load(
        self,
        ban_duration: float,
        *,
        renew: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> dict[str, float]:
        """Return address -> expiry for seeding the ban store.

        With renew=True every address gets now + ban_duration regardless of
        what was stored. With renew=False a stored expiry is kept (even if
        already past, so the next sweep lifts the block) and only entries
        without one are renewed.
        """
        now = clock()
        fresh = now + ban_duration
        bans: dict[str, float] = {}
        for ip, stored in self.read().items():
            if renew or stored is None:
                bans[ip] = fresh
            else:
                bans[ip] = stored
        logger.info("Loaded %d banned address(es) from %s", len(bans), self.path)
        return bans

    def save(self, bans: Mapping[str, float]) -> None:
        """Rewrite the whole file. Raises OSError on failure."""
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                for ip, exp in bans.items():
                    tmp.write(f"{ip} {int(exp)}\n")
                tmp.flush()
                os.fsync(tmp.fileno())
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
