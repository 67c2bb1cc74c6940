"""
Enforcement backends – the part that actually blocks traffic.

The ban engine only calls block(), unblock() and is_active(); it never
looks at rule syntax. Every call returns an EnforcementResult. A result with
applied=False is a failed call; the caller decides whether to log or raise
(see Firewall.require).

Backends
--------
ufw       – ``ufw deny from IP to any`` / ``ufw delete deny from IP to any``
nftables  – element add/delete on a named ipv4_addr set
dry-run   – logs the intended action, touches nothing

DRY_RUN=true in the environment forces the dry-run backend.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field

from ssh_fb.errors import FirewallError

logger = logging.getLogger("ssh_fb.firewall")

ENV_DRY_RUN: bool = os.environ.get("DRY_RUN", "false").lower() == "true"


@dataclass
class EnforcementResult:
    applied: bool
    reason: str = "ok"
    command: list[str] = field(default_factory=list)
    stdout: str = ""
    stderr: str = ""
    ts: float = field(default_factory=time.time)


class Firewall:
    name: str = "base"

    def block(self, address: str) -> EnforcementResult:
        raise NotImplementedError

    def unblock(self, address: str) -> EnforcementResult:
        raise NotImplementedError

    def is_active(self) -> bool:
        raise NotImplementedError

    @staticmethod
    def require(result: EnforcementResult, *, address: str, op: str) -> EnforcementResult:
        """Raise FirewallError unless result was applied."""
        if not result.applied:
            detail = result.stderr or result.reason
            raise FirewallError(f"{op} {address} failed: {detail}", address=address, op=op)
        return result


class CommandFirewall(Firewall):
    """Shared subprocess runner for the command-line backends."""

    binary = ""

    def __init__(self, command_timeout: float = 10.0) -> None:
        self.command_timeout = command_timeout

    def _run(self, command: list[str]) -> EnforcementResult:
        effective = list(command)
        if os.geteuid() != 0 and effective and effective[0] == self.binary:
            effective = ["sudo", "-n", *effective]

        try:
            proc = subprocess.run(
                effective,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            return EnforcementResult(applied=False, reason="exec_error", command=effective, stderr=str(exc))

        result = EnforcementResult(
            applied=proc.returncode == 0,
            command=effective,
            stdout=(proc.stdout or "").strip()[:400],
            stderr=(proc.stderr or "").strip()[:400],
        )
        if proc.returncode != 0:
            result.reason = "command_failed"
        return result

    def is_active(self) -> bool:
        return shutil.which(self.binary) is not None and self._status().applied

    def _status(self) -> EnforcementResult:
        raise NotImplementedError


class UFWFirewall(CommandFirewall):
    name = "ufw"
    binary = "ufw"

    def block(self, address: str) -> EnforcementResult:
        return self._run(["ufw", "deny", "from", address, "to", "any"])

    def unblock(self, address: str) -> EnforcementResult:
        return self._run(["ufw", "delete", "deny", "from", address, "to", "any"])

    def _status(self) -> EnforcementResult:
        result = self._run(["ufw", "status"])
        # "Status: inactive" still exits 0.
        if result.applied and "status: active" not in result.stdout.lower():
            result.applied = False
            result.reason = "inactive"
        return result


class NftablesFirewall(CommandFirewall):
    """Adds/removes addresses in a named set.

    Expects a set like:
        table inet filter
        set ssh_fb_blocklist { type ipv4_addr; }
    referenced by a drop rule on the input chain.
    """

    name = "nftables"
    binary = "nft"

    def __init__(self, table: str = "filter", set_name: str = "ssh_fb_blocklist", command_timeout: float = 10.0) -> None:
        super().__init__(command_timeout)
        self.table = table
        self.set_name = set_name

    def _element(self, verb: str, address: str) -> list[str]:
        return ["nft", verb, "element", "inet", self.table, self.set_name, "{", address, "}"]

    def block(self, address: str) -> EnforcementResult:
        return self._run(self._element("add", address))

    def unblock(self, address: str) -> EnforcementResult:
        return self._run(self._element("delete", address))

    def _status(self) -> EnforcementResult:
        return self._run(["nft", "list", "set", "inet", self.table, self.set_name])


class DryRunFirewall(Firewall):
    name = "dry-run"

    def block(self, address: str) -> EnforcementResult:
        logger.info("[DRY-RUN] Would block %s", address)
        return EnforcementResult(applied=True, reason="dry_run")

    def unblock(self, address: str) -> EnforcementResult:
        logger.info("[DRY-RUN] Would unblock %s", address)
        return EnforcementResult(applied=True, reason="dry_run")

    def is_active(self) -> bool:
        return True


def build_firewall(backend: str, *, nft_table: str = "filter", nft_set: str = "ssh_fb_blocklist",
                   command_timeout: float = 10.0, dry_run: bool | None = None) -> Firewall:
    if dry_run is None:
        dry_run = ENV_DRY_RUN
    if dry_run or backend == "dry-run":
        return DryRunFirewall()
    if backend == "ufw":
        return UFWFirewall(command_timeout=command_timeout)
    if backend == "nftables":
        return NftablesFirewall(table=nft_table, set_name=nft_set, command_timeout=command_timeout)
    raise ValueError(f"unknown firewall backend: {backend}")
