"""Configuration loading and validation.

The configuration file is a flat YAML (or JSON) mapping:

    domain_configs: "0123456789abcdef0123456789abcdef:example.com,www.example.com"
    cloudflare_zone_api_token: "..."
    enable_ipv6: "no"
    use_same_record_for_ipv6: "yes"
    dns_record_ipv6: ""
    ttl: 1
    proxied: false
    auto_create_records: "no"
    max_retries: 3
    retry_delay: 5
    max_retry_delay: 60
    max_dns_backups: 10
    max_update_backups: 5
    log_cleanup_days: 7
    notify_telegram: "no"
    telegram_bot_token: ""
    telegram_chat_id: ""

`domain_configs` holds one or more `zoneid:domain[,domain...]` segments
separated by `;`. `dns_record_ipv6` is a comma-separated list of names used
for AAAA records when `use_same_record_for_ipv6` is "no"; an entry written as
`zoneid:name` is only reconciled in that zone, a bare name in every zone.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from cloudflare_ddns.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "cloudflare-dns-update.yaml"

ZONE_ID_RE = re.compile(r"^[0-9a-f]{32}$")
DOMAIN_RE = re.compile(r"^([a-zA-Z0-9]([-a-zA-Z0-9]*[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")

DEFAULTS: Dict[str, Any] = {
    "domain_configs": "",
    "cloudflare_zone_api_token": "",
    "enable_ipv6": "no",
    "use_same_record_for_ipv6": "yes",
    "dns_record_ipv6": "",
    "ttl": 1,
    "proxied": False,
    "auto_create_records": "no",
    "max_retries": 3,
    "retry_delay": 5,
    "max_retry_delay": 60,
    "max_dns_backups": 10,
    "max_update_backups": 5,
    "log_cleanup_days": 7,
    "notify_telegram": "no",
    "telegram_bot_token": "",
    "telegram_chat_id": "",
    "backup_dir": "dns_backups",
    "log_file": "",
}


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ZoneConfig:
    """A Cloudflare zone and the domains kept in sync inside it."""

    zone_id: str
    domains: Tuple[str, ...]


@dataclass(frozen=True)
class Ipv6Record:
    """A name that receives an AAAA record in separate-record mode.

    `zone_id` is None for a bare name, which is reconciled in every zone.
    """

    name: str
    zone_id: Optional[str] = None

    def applies_to(self, zone_id: str) -> bool:
        return self.zone_id is None or self.zone_id == zone_id


@dataclass(frozen=True)
class Settings:
    zones: Tuple[ZoneConfig, ...]
    api_token: str
    enable_ipv6: bool = False
    use_same_record_for_ipv6: bool = True
    ipv6_records: Tuple[Ipv6Record, ...] = ()
    ttl: int = 1
    proxied: bool = False
    auto_create_records: bool = False
    max_retries: int = 3
    retry_delay: float = 5.0
    max_retry_delay: float = 60.0
    max_dns_backups: int = 10
    max_update_backups: int = 5
    log_cleanup_days: int = 7
    notify_telegram: bool = False
    telegram_bot_token: str = field(default="", repr=False)
    telegram_chat_id: str = ""
    backup_dir: Path = Path("dns_backups")
    log_file: Optional[Path] = None

    @property
    def zone_ids(self) -> List[str]:
        return [z.zone_id for z in self.zones]

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "Settings":
        """Validate a raw configuration mapping and build Settings.

        Relative `backup_dir` and `log_file` values are resolved against
        `base_dir` when given.
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping of option names to values")

        for key in sorted(set(data) - set(DEFAULTS)):
            logger.warning(f"Ignoring unknown configuration option '{key}'")

        raw = dict(DEFAULTS)
        raw.update({k: v for k, v in data.items() if k in DEFAULTS and v is not None})

        zones = parse_domain_configs(str(raw["domain_configs"]))

        api_token = str(raw["cloudflare_zone_api_token"]).strip()
        if not api_token:
            raise ConfigError("Cloudflare API token is required")

        enable_ipv6 = _parse_flag("enable_ipv6", raw["enable_ipv6"], "yes", "no")
        use_same = True
        ipv6_records: Tuple[Ipv6Record, ...] = ()
        if enable_ipv6:
            use_same = _parse_flag(
                "use_same_record_for_ipv6", raw["use_same_record_for_ipv6"], "yes", "no"
            )
            if not use_same:
                ipv6_records = parse_ipv6_records(
                    str(raw["dns_record_ipv6"]), [z.zone_id for z in zones]
                )

        ttl = _parse_int("ttl", raw["ttl"])
        if ttl != 1 and not 120 <= ttl <= 7200:
            raise ConfigError("ttl must be 1 or between 120 and 7200")

        max_retries = _parse_int("max_retries", raw["max_retries"], minimum=0)
        retry_delay = _parse_float("retry_delay", raw["retry_delay"])
        if retry_delay <= 0:
            raise ConfigError("retry_delay must be greater than 0")
        max_retry_delay = _parse_float("max_retry_delay", raw["max_retry_delay"])
        if max_retry_delay < retry_delay:
            raise ConfigError("max_retry_delay must not be smaller than retry_delay")

        notify_telegram = _parse_flag("notify_telegram", raw["notify_telegram"], "yes", "no")
        bot_token = str(raw["telegram_bot_token"] or "").strip()
        chat_id = str(raw["telegram_chat_id"] or "").strip()
        if notify_telegram and (not bot_token or not chat_id):
            raise ConfigError("Telegram notifications enabled but token or chat ID is missing")

        backup_dir = Path(str(raw["backup_dir"]))
        log_file = Path(str(raw["log_file"])) if raw["log_file"] else None
        if base_dir is not None:
            if not backup_dir.is_absolute():
                backup_dir = base_dir / backup_dir
            if log_file is not None and not log_file.is_absolute():
                log_file = base_dir / log_file

        return cls(
            zones=zones,
            api_token=api_token,
            enable_ipv6=enable_ipv6,
            use_same_record_for_ipv6=use_same,
            ipv6_records=ipv6_records,
            ttl=ttl,
            proxied=_parse_flag("proxied", raw["proxied"], "true", "false"),
            auto_create_records=_parse_flag(
                "auto_create_records", raw["auto_create_records"], "yes", "no"
            ),
            max_retries=max_retries,
            retry_delay=retry_delay,
            max_retry_delay=max_retry_delay,
            max_dns_backups=_parse_int("max_dns_backups", raw["max_dns_backups"], minimum=0),
            max_update_backups=_parse_int(
                "max_update_backups", raw["max_update_backups"], minimum=0
            ),
            log_cleanup_days=_parse_int("log_cleanup_days", raw["log_cleanup_days"], minimum=0),
            notify_telegram=notify_telegram,
            telegram_bot_token=bot_token,
            telegram_chat_id=chat_id,
            backup_dir=backup_dir,
            log_file=log_file,
        )


# =============================================================================
# Parsers
# =============================================================================


def parse_domain_configs(value: str) -> Tuple[ZoneConfig, ...]:
    """Parse `zoneid:domain,domain;zoneid:domain` into ZoneConfigs."""
    zones: List[ZoneConfig] = []
    for raw_segment in value.split(";"):
        segment = raw_segment.strip()
        if not segment:
            continue

        if ":" not in segment:
            raise ConfigError(
                f"Invalid domain_configs segment '{segment}': expected zoneid:domain1,domain2"
            )
        zone_id, domains_part = segment.split(":", 1)
        zone_id = zone_id.strip()
        if not ZONE_ID_RE.match(zone_id):
            raise ConfigError(f"Invalid zone ID format: {zone_id}")

        domains = [d.strip() for d in domains_part.split(",") if d.strip()]
        if not domains:
            raise ConfigError(f"Zone {zone_id} in domain_configs has no domains")
        for domain in domains:
            validate_domain(domain)

        zones.append(ZoneConfig(zone_id=zone_id, domains=tuple(domains)))

    if not zones:
        raise ConfigError(
            "Invalid or empty domain_configs. "
            "Expected format: zoneid1:domain1.com,domain2.com;zoneid2:domain3.com"
        )
    return tuple(zones)


def parse_ipv6_records(value: str, zone_ids: List[str]) -> Tuple[Ipv6Record, ...]:
    """Parse the `dns_record_ipv6` list.

    Entries are `name` or `zoneid:name`. A zone id must belong to a
    configured zone.
    """
    records: List[Ipv6Record] = []
    for raw_item in value.split(","):
        item = raw_item.strip()
        if not item:
            continue

        zone_id: Optional[str] = None
        name = item
        if ":" in item:
            zone_id, name = (part.strip() for part in item.split(":", 1))
            if not ZONE_ID_RE.match(zone_id):
                raise ConfigError(f"Invalid zone ID format in dns_record_ipv6: {zone_id}")
            if zone_id not in zone_ids:
                raise ConfigError(
                    f"dns_record_ipv6 entry '{item}' refers to zone {zone_id} "
                    "which is not in domain_configs"
                )
        validate_domain(name)
        records.append(Ipv6Record(name=name, zone_id=zone_id))

    if not records:
        raise ConfigError("IPv6 is enabled with different records but dns_record_ipv6 is empty")
    return tuple(records)


def validate_domain(domain: str) -> str:
    if not DOMAIN_RE.match(domain):
        raise ConfigError(f"Invalid domain name format: {domain}")
    return domain


def load_settings(path: str, overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """Load, merge overrides into, and validate a configuration file."""
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Configuration file {config_path} not found")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})

    logger.debug(f"Loaded configuration from {config_path}")
    return Settings.from_dict(data, base_dir=config_path.resolve().parent)


def default_config_path() -> str:
    return os.getenv("CLOUDFLARE_DDNS_CONFIG", DEFAULT_CONFIG_PATH)


# =============================================================================
# Utility Functions
# =============================================================================


def _parse_flag(key: str, value: Any, true_word: str, false_word: str) -> bool:
    # YAML 1.1 already turns unquoted yes/no and true/false into booleans.
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text == true_word:
        return True
    if text == false_word:
        return False
    raise ConfigError(f'Incorrect "{key}" parameter, choose "{true_word}" or "{false_word}"')


def _parse_int(key: str, value: Any, *, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got '{value}'") from None
    if minimum is not None and number < minimum:
        raise ConfigError(f"{key} must be at least {minimum}")
    return number


def _parse_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        return float(str(value).strip())
    except ValueError:
        raise ConfigError(f"{key} must be a number, got '{value}'") from None
