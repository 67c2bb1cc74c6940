"""
Ban state store – failure counts and ban expiries per address.

All reads and writes go through one ReadWriteLock. The maps are private;
callers only see the operations below, so the two rules that matter are
enforced here and nowhere else:

  * a banned address never has its failure count incremented
  * an expired ban found during a read is removed on the spot (lazy expiry)

Lazy expiry only drops bookkeeping. The address is remembered in a
"lapsed" set until the sweeper has lifted its firewall block.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Protocol

from ssh_fb.rwlock import ReadWriteLock

logger = logging.getLogger("ssh_fb.store")

Clock = Callable[[], float]


class BanSink(Protocol):
    def save(self, bans: Mapping[str, float]) -> None: ...


@dataclass(frozen=True)
class BanEntry:
    address: str
    expires_at: float
    failures: int


class BanStore:
    def __init__(self, threshold: int, clock: Clock = time.time) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        self.threshold = threshold
        self._clock = clock
        self._lock = ReadWriteLock()
        self._failures: dict[str, int] = {}
        self._bans: dict[str, float] = {}
        self._lapsed: set[str] = set()

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the write lock)
    # ------------------------------------------------------------------

    def _expired(self, address: str, now: float) -> bool:
        exp = self._bans.get(address)
        return exp is not None and now >= exp

    def _drop(self, address: str) -> None:
        self._bans.pop(address, None)
        self._failures.pop(address, None)

    def _lazy_expire(self, address: str, now: float) -> bool:
        if not self._expired(address, now):
            return False
        self._drop(address)
        self._lapsed.add(address)
        logger.debug("Lazy expiry of ban for %s", address)
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def record_failure(self, address: str) -> tuple[int, bool]:
        """Count one failed login.

        Returns (count, reached_threshold). A banned address is left
        untouched and reports (count, False).
        """
        with self._lock.write_locked():
            now = self._clock()
            self._lazy_expire(address, now)
            if address in self._bans:
                return self._failures.get(address, 0), False
            count = self._failures.get(address, 0) + 1
            self._failures[address] = count
            return count, count >= self.threshold

    def is_banned(self, address: str) -> bool:
        with self._lock.read_locked():
            exp = self._bans.get(address)
            if exp is None:
                return False
            if self._clock() < exp:
                return True
        # Expired: upgrade to exclusive and re-check, the sweeper or a new
        # ban may have changed the record in between.
        with self._lock.write_locked():
            now = self._clock()
            self._lazy_expire(address, now)
            exp = self._bans.get(address)
            return exp is not None and now < exp

    def create_ban(self, address: str, duration: float) -> float:
        """Insert or overwrite the ban for address. Returns its expiry."""
        with self._lock.write_locked():
            expires_at = self._clock() + duration
            self._bans[address] = expires_at
            self._lapsed.discard(address)
            return expires_at

    def list_banned(self) -> set[str]:
        with self._lock.read_locked():
            now = self._clock()
            stale = [ip for ip, exp in self._bans.items() if now >= exp]
            if not stale:
                return set(self._bans)
        with self._lock.write_locked():
            now = self._clock()
            for ip in list(self._bans):
                self._lazy_expire(ip, now)
            return set(self._bans)

    def sweep_expired(self, now: float | None = None) -> set[str]:
        """Remove every expired ban and return those addresses.

        Addresses dropped earlier by lazy expiry are included, since their
        firewall block is still in place.
        """
        with self._lock.write_locked():
            if now is None:
                now = self._clock()
            expired = {ip for ip, exp in self._bans.items() if now >= exp}
            for ip in expired:
                self._drop(ip)
            removed = expired | self._lapsed
            self._lapsed = set()
            return removed

    # ------------------------------------------------------------------
    # Read helpers for status output
    # ------------------------------------------------------------------

    def failure_count(self, address: str) -> int:
        with self._lock.read_locked():
            return self._failures.get(address, 0)

    def expires_at(self, address: str) -> float | None:
        with self._lock.read_locked():
            return self._bans.get(address)

    def snapshot(self) -> list[BanEntry]:
        with self._lock.read_locked():
            now = self._clock()
            entries = [
                BanEntry(address=ip, expires_at=exp, failures=self._failures.get(ip, 0))
                for ip, exp in self._bans.items()
                if now < exp
            ]
        return sorted(entries, key=lambda e: e.expires_at)

    def tracked_count(self) -> int:
        """Number of addresses with a failure count."""
        with self._lock.read_locked():
            return len(self._failures)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def restore(self, bans: Mapping[str, float] | Iterable[tuple[str, float]]) -> int:
        """Load bans read from the blacklist at startup."""
        items = bans.items() if isinstance(bans, Mapping) else bans
        with self._lock.write_locked():
            n = 0
            for ip, exp in items:
                self._bans[ip] = exp
                n += 1
            return n

    def persist(self, sink: BanSink) -> None:
        """Write the current ban set through sink while holding the write lock.

        Holding the exclusive side keeps full-file rewrites from interleaving.
        """
        with self._lock.write_locked():
            sink.save(dict(self._bans))
