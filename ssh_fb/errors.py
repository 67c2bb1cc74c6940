"""Exception types raised across ssh_fb."""
from __future__ import annotations


class SSHFBError(Exception):
    """Base class for all ssh_fb errors."""


class ConfigError(SSHFBError):
    """Configuration file missing, unreadable or invalid."""


class TailerError(SSHFBError):
    """The auth log could not be opened or read. Fatal for the monitor."""


class FirewallError(SSHFBError):
    """An enforcement command could not be applied."""

    def __init__(self, message: str, *, address: str = "", op: str = "") -> None:
        super().__init__(message)
        self.address = address
        self.op = op


class GeoLookupError(SSHFBError):
    """Geolocation lookup failed after all retries."""


class NotificationError(SSHFBError):
    """A notification could not be delivered."""
