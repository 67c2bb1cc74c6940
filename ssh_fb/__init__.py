"""
ssh_fb package.

Watches the SSH auth log, counts failed logins per source address and
bans addresses that cross the configured threshold. Bans expire and are
lifted by a background sweep.

Modules
-------
events      – auth log line -> AuthEvent
store       – per-address failure counts and ban expiries (one RW lock)
blacklist   – flat-file persistence of the banned set
tailer      – async "tail -f" line source
sweeper     – periodic unban of expired addresses
coordinator – event -> decision -> enforcement / notification
monitor     – wires everything into asyncio tasks
"""
from __future__ import annotations

__version__ = "1.2.0"
