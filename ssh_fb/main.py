#!/usr/bin/env python3
"""ssh_fb command line.

Usage:
  ssh-fb                      # run the monitor (same as: ssh-fb run)
  ssh-fb check-config         # validate the config and print a summary
  ssh-fb test-notify          # send one sample of each notification
  ssh-fb version
  sudo DRY_RUN=true ssh-fb run --config configs/config.yaml
"""
from __future__ import annotations

import argparse
import asyncio
import platform
import signal
import sys

from ssh_fb import __version__
from ssh_fb.config import Settings, load_config, resolve_config_path
from ssh_fb.errors import ConfigError, NotificationError, TailerError
from ssh_fb.logs import setup_logging
from ssh_fb.monitor import Monitor, build_notifier

COMMANDS = ("run", "check-config", "test-notify", "version")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ssh-fb", description="SSH brute-force ban service")
    parser.add_argument("command", nargs="?", default="run", choices=COMMANDS, help="what to do (default: run)")
    parser.add_argument("--config", default=None, help="path to config.yaml (env: SSH_FB_CONFIG)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def print_summary(settings: Settings) -> None:
    sp = settings.ssh_protection
    print(f"log file          : {sp.ssh_log_file}")
    print(f"max attempts      : {sp.max_failed_attempts}")
    print(f"ban duration      : {sp.ban_duration_hours}h")
    print(f"blacklist         : {settings.blacklist.file} (renew on load: {settings.blacklist.renew_on_load})")
    print(f"sweep interval    : {settings.blacklist.cleanup_interval_hours}h")
    print(f"firewall backend  : {settings.firewall.backend}")
    print(f"telegram          : {'on' if settings.telegram.enabled else 'off'}")
    print(f"status api        : {'%s:%d' % (settings.api.host, settings.api.port) if settings.api.enabled else 'off'}")


async def run_monitor(settings: Settings) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    monitor = Monitor(settings)
    try:
        await monitor.run(stop)
    except TailerError:
        return 1
    except OSError as exc:
        print(f"[ssh-fb] startup failed: {exc}", file=sys.stderr, flush=True)
        return 1
    return 0


async def run_test_notify(settings: Settings) -> int:
    notifier = build_notifier(settings)
    try:
        await notifier.send_test_messages()
    except NotificationError as exc:
        print(f"[ssh-fb] test notification failed: {exc}", file=sys.stderr, flush=True)
        return 1
    finally:
        await notifier.aclose()
    print("[ssh-fb] test notifications sent", flush=True)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.command == "version":
        print(f"ssh_fb {__version__}\nPython {platform.python_version()}\n{platform.system()}/{platform.machine()}")
        return 0

    path = resolve_config_path(args.config)
    try:
        settings = load_config(path)
    except ConfigError as exc:
        print(f"[ssh-fb] {exc}", file=sys.stderr, flush=True)
        return 2

    if args.command == "check-config":
        print(f"[ssh-fb] {path}: OK")
        print_summary(settings)
        return 0

    setup_logging(settings.logging, verbose=args.verbose)

    if args.command == "test-notify":
        return asyncio.run(run_test_notify(settings))
    return asyncio.run(run_monitor(settings))


if __name__ == "__main__":
    raise SystemExit(main())
