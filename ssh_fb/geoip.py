"""
Geolocation lookup for notification text.

The result only decorates messages; it never affects a ban decision. A
lookup is retried a few times with a fixed pause, then describe() falls
back to a placeholder line.
"""
from __future__ import annotations

import asyncio
import ipaddress
import logging
from dataclasses import dataclass

import httpx

from ssh_fb.errors import GeoLookupError

logger = logging.getLogger("ssh_fb.geoip")


@dataclass(frozen=True)
class GeoInfo:
    country: str = ""
    region: str = ""
    city: str = ""
    isp: str = ""

    @classmethod
    def from_json(cls, data: dict) -> "GeoInfo":
        return cls(
            country=str(data.get("country_name") or data.get("country") or ""),
            region=str(data.get("region") or ""),
            city=str(data.get("city") or ""),
            isp=str(data.get("org") or data.get("isp") or ""),
        )


def _is_public(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return ip.is_global


class IPInfoClient:
    def __init__(
        self,
        api_url: str,
        language: str = "en",
        timeout: float = 5.0,
        retry_count: int = 3,
        retry_interval: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.language = language
        self.retry_count = retry_count
        self.retry_interval = retry_interval
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def lookup(self, address: str) -> GeoInfo:
        url = f"{self.api_url}/{address}/json/"
        last_exc: Exception | None = None
        for attempt in range(self.retry_count + 1):
            try:
                r = await self._client.get(url, params={"lang": self.language})
                r.raise_for_status()
                data = r.json()
                if not isinstance(data, dict):
                    raise ValueError("unexpected response shape")
                if data.get("error"):
                    raise ValueError(str(data.get("reason") or "lookup rejected"))
                return GeoInfo.from_json(data)
            except (httpx.HTTPError, ValueError) as exc:
                last_exc = exc
                logger.debug("op=geo_lookup ip=%s attempt=%d failed: %s", address, attempt + 1, exc)
                if attempt < self.retry_count:
                    await asyncio.sleep(self.retry_interval)
        raise GeoLookupError(f"lookup for {address} failed: {last_exc}")

    async def describe(self, address: str) -> str:
        """Human-readable location block, or a placeholder on failure."""
        if not _is_public(address):
            return f"IP: {address} (private network)"
        try:
            info = await self.lookup(address)
        except GeoLookupError as exc:
            logger.warning("op=geo_lookup ip=%s failed: %s", address, exc)
            return f"IP: {address} (location unavailable)"
        place = " ".join(p for p in (info.country, info.region, info.city) if p)
        return f"IP: {address}\nLocation: {place or 'unknown'}\nISP: {info.isp or 'unknown'}"


class StaticGeo:
    """Stand-in used when lookups are disabled."""

    async def describe(self, address: str) -> str:
        return f"IP: {address}"

    async def aclose(self) -> None:
        return None
