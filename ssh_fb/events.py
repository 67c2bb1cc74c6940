"""
Event extractor – turns raw auth log lines into AuthEvents.

Only two line shapes matter:

    ... sshd[1234]: Failed password for root from 203.0.113.7 port 52113 ssh2
    ... sshd[1234]: Accepted password for admin from 198.51.100.4 port 40022 ssh2

A marker without a "from <IPv4>" part is log noise and yields None.
"""
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum

FAILED_MARKER = "Failed password"
ACCEPTED_MARKER = "Accepted password"

FROM_IPV4_RE = re.compile(r"\bfrom\s+(?P<ip>\d{1,3}(?:\.\d{1,3}){3})\b")


class EventKind(str, Enum):
    FAILED = "failed"
    SUCCESS = "success"


@dataclass(frozen=True)
class AuthEvent:
    kind: EventKind
    address: str
    line: str = ""


def _valid_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def extract_address(line: str) -> str | None:
    """Return the IPv4 address that follows the word "from", if any."""
    for match in FROM_IPV4_RE.finditer(line):
        ip = match.group("ip")
        if _valid_ipv4(ip):
            return ip
    return None


def parse_line(line: str) -> AuthEvent | None:
    """Parse one log line. Returns None for anything that is not an auth event."""
    if FAILED_MARKER in line:
        kind = EventKind.FAILED
    elif ACCEPTED_MARKER in line:
        kind = EventKind.SUCCESS
    else:
        return None

    address = extract_address(line)
    if address is None:
        return None
    return AuthEvent(kind=kind, address=address, line=line.rstrip("\r\n"))
