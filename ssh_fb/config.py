"""
Configuration – YAML file validated into frozen pydantic models.

Lookup order for the file: --config on the command line, then the
SSH_FB_CONFIG environment variable, then configs/config.yaml.
Settings are read once at startup and never change afterwards.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ssh_fb.errors import ConfigError

DEFAULT_CONFIG_PATH = "configs/config.yaml"

PLACEHOLDER_TOKEN = "your_bot_token"
PLACEHOLDER_CHAT_ID = 123456789

SUCCESS_TEMPLATE = "✅ SSH login succeeded\nTime: {time}\n{ip_info}\nServer: {server}"
FAILED_TEMPLATE = (
    "⚠️ SSH login failed\nTime: {time}\n{ip_info}\n"
    "Failed attempts: {attempts}/{max_attempts}\nServer: {server}"
)
BANNED_TEMPLATE = (
    "🚫 IP {ip} has been banned\nTime: {time}\n{ip_info}\n"
    "Reason: SSH brute force\nBan duration: {duration} hours\n"
    "Unban time: {expire_time}\nServer: {server}"
)


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class TelegramConfig(_Section):
    enabled: bool = True
    bot_token: str = ""
    chat_id: int = 0
    api_url: str = "https://api.telegram.org"
    commands: bool = False
    timeout: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _check_credentials(self) -> "TelegramConfig":
        if not self.enabled:
            return self
        if not self.bot_token or self.bot_token == PLACEHOLDER_TOKEN:
            raise ValueError("telegram.bot_token must be set (not empty or the placeholder)")
        if self.chat_id in (0, PLACEHOLDER_CHAT_ID):
            raise ValueError("telegram.chat_id must be set (not 0 or the placeholder)")
        return self


class SSHProtectionConfig(_Section):
    max_failed_attempts: int = Field(default=5, gt=0)
    ban_duration_hours: float = Field(default=24, gt=0)
    ssh_log_file: str = Field(default="/var/log/auth.log", min_length=1)
    follow_rotation: bool = False
    poll_interval: float = Field(default=0.1, gt=0, lt=1)

    @property
    def ban_duration_seconds(self) -> float:
        return self.ban_duration_hours * 3600


class BlacklistConfig(_Section):
    file: str = Field(default="blacklist.txt", min_length=1)
    cleanup_interval_hours: float = Field(default=1, gt=0)
    renew_on_load: bool = True

    @property
    def cleanup_interval_seconds(self) -> float:
        return self.cleanup_interval_hours * 3600


class FirewallConfig(_Section):
    backend: Literal["ufw", "nftables", "dry-run"] = "ufw"
    nft_table: str = "filter"
    nft_set: str = "ssh_fb_blocklist"
    command_timeout: float = Field(default=10.0, gt=0)


class LoggingConfig(_Section):
    log_file: str = ""
    level: str = "info"
    max_size: int = Field(default=10, gt=0)      # MB
    max_backups: int = Field(default=5, ge=0)


class ServiceConfig(_Section):
    service_name: str = "ssh_fb"
    install_path: str = "/opt/ssh_fb"

    @property
    def server_label(self) -> str:
        return f"{self.service_name} ({self.install_path})"


class IPInfoConfig(_Section):
    enabled: bool = True
    api_url: str = Field(default="https://ipapi.co", min_length=1)
    language: str = "en"
    timeout: float = Field(default=5, gt=0)
    retry_count: int = Field(default=3, ge=0)
    retry_interval: float = Field(default=1, ge=0)


class NotificationToggle(_Section):
    enabled: bool = True
    template: str = ""


class NotificationsConfig(_Section):
    login_success: NotificationToggle = NotificationToggle(template=SUCCESS_TEMPLATE)
    login_failed: NotificationToggle = NotificationToggle(template=FAILED_TEMPLATE)
    ip_banned: NotificationToggle = NotificationToggle(template=BANNED_TEMPLATE)


class JournalConfig(_Section):
    enabled: bool = True
    db_path: str = "ssh_fb.db"


class APIConfig(_Section):
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0, lt=65536)


class Settings(_Section):
    telegram: TelegramConfig = TelegramConfig(enabled=False)
    ssh_protection: SSHProtectionConfig = SSHProtectionConfig()
    blacklist: BlacklistConfig = BlacklistConfig()
    firewall: FirewallConfig = FirewallConfig()
    logging: LoggingConfig = LoggingConfig()
    service: ServiceConfig = ServiceConfig()
    ip_info: IPInfoConfig = IPInfoConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    journal: JournalConfig = JournalConfig()
    api: APIConfig = APIConfig()


def _fill_templates(data: dict) -> dict:
    """Empty templates fall back to the built-in text."""
    defaults = {
        "login_success": SUCCESS_TEMPLATE,
        "login_failed": FAILED_TEMPLATE,
        "ip_banned": BANNED_TEMPLATE,
    }
    notifications = data.get("notifications") or {}
    for key, template in defaults.items():
        section = notifications.get(key)
        if isinstance(section, dict) and not section.get("template"):
            section["template"] = template
    return data


def parse_config(data: dict) -> Settings:
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    try:
        return Settings.model_validate(_fill_templates(data))
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


def resolve_config_path(cli_path: str | None = None) -> Path:
    return Path(cli_path or os.environ.get("SSH_FB_CONFIG") or DEFAULT_CONFIG_PATH)


def load_config(path: str | os.PathLike[str]) -> Settings:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except OSError as exc:
        raise ConfigError(f"cannot open config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse config file {path}: {exc}") from exc
    return parse_config(data)
