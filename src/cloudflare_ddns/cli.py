#!/usr/bin/env python3
"""cloudflare-ddns - Dynamic DNS for Cloudflare

Keeps A (and optionally AAAA) records in one or more Cloudflare zones pointed
at this host's public IP address. Records are only written when their content
or proxied flag differ from the desired state.

Usage:
    cloudflare-ddns [-c FILE] [-d DOMAINS] [-t TOKEN] [-6 yes|no] [-p true|false]
                    [-l TTL] [--backup | --backup-only | --restore FILE]

Modes:
    (default)        Resolve public IPs and reconcile records
    --backup         Reconcile, then back up every record of every zone
    --backup-only    Back up without resolving IPs or touching records
    --restore FILE   Restore records from a backup (bare names are looked up
                     in the backup directory)

Environment variables:
    CLOUDFLARE_DDNS_CONFIG   Configuration file (default: cloudflare-dns-update.yaml)
    LOG_LEVEL                DEBUG, INFO, WARNING, ERROR (default: INFO)

Exit status is 0 when everything succeeded and 1 when the configuration was
invalid, no IP address could be resolved, or any record, backup or restore
operation failed.
"""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from cloudflare_ddns.backup import BackupManager
from cloudflare_ddns.cloudflare import CloudflareClient, RetryPolicy
from cloudflare_ddns.config import Settings, default_config_path, load_settings
from cloudflare_ddns.exceptions import ConfigError, IPUnavailable, RestoreError
from cloudflare_ddns.ip_resolver import IPFamily, IPResolver
from cloudflare_ddns.notifier import Notifier, NullNotifier, TelegramNotifier
from cloudflare_ddns.reconciler import Reconciler

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

EXIT_OK = 0
EXIT_FAILURE = 1

logger = logging.getLogger(__name__)


# =============================================================================
# Logging Setup
# =============================================================================


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )


def add_file_logging(path: Path, keep_days: int) -> None:
    """Also log to `path`, rotated daily. `keep_days` of 0 keeps every file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        path, when="midnight", backupCount=keep_days, encoding="utf-8"
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
    logging.getLogger().addHandler(handler)


# =============================================================================
# Argument Parsing
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudflare-ddns",
        description="Keep Cloudflare DNS records in sync with this host's public IP.",
    )
    parser.add_argument("-c", "--config", default=default_config_path(), help="Use specified config file")
    parser.add_argument(
        "-d",
        "--domains",
        help='Override domain configs (format: "zoneid1:domain1.com,domain2.com;zoneid2:domain3.com")',
    )
    parser.add_argument("-t", "--token", help="Override Cloudflare API token")
    parser.add_argument("-6", "--ipv6", choices=["yes", "no"], help="Enable/disable IPv6 support")
    parser.add_argument("-p", "--proxy", choices=["true", "false"], help="Enable/disable Cloudflare proxy")
    parser.add_argument("-l", "--ttl", help="Set TTL (1 or 120-7200)")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--backup", action="store_true", help="Update DNS records, then back them up")
    mode.add_argument("--backup-only", action="store_true", help="Back up DNS records without updating them")
    mode.add_argument("--restore", metavar="FILE", help="Restore DNS records from backup file")
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    overrides = {
        "domain_configs": args.domains,
        "cloudflare_zone_api_token": args.token,
        "enable_ipv6": args.ipv6,
        "proxied": args.proxy,
        "ttl": args.ttl,
    }
    return {k: v for k, v in overrides.items() if v is not None}


# =============================================================================
# Run Modes
# =============================================================================


def create_notifier(settings: Settings) -> Notifier:
    if settings.notify_telegram:
        return TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id)
    return NullNotifier()


def create_client(settings: Settings) -> CloudflareClient:
    return CloudflareClient(
        settings.api_token,
        retry_policy=RetryPolicy(
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            max_retry_delay=settings.max_retry_delay,
        ),
    )


def resolve_addresses(resolver: IPResolver, settings: Settings) -> Tuple[Optional[str], Optional[str]]:
    """Resolve the configured families.

    Raises IPUnavailable only when no family produced an address.
    """
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None

    try:
        ipv4 = resolver.resolve(IPFamily.IPV4)
        logger.info(f"External IPv4 is: {ipv4}")
    except IPUnavailable:
        logger.warning("Failed to get IPv4 address, A records will not be updated")

    if settings.enable_ipv6:
        try:
            ipv6 = resolver.resolve(IPFamily.IPV6)
            logger.info(f"External IPv6 is: {ipv6}")
        except IPUnavailable:
            logger.warning("Failed to get IPv6 address, AAAA records will not be updated")

    if not ipv4 and not ipv6:
        raise IPUnavailable(
            "IPv4/IPv6",
            f"No valid IP addresses available. IPv4: none, "
            f"IPv6: {'none' if settings.enable_ipv6 else 'disabled'}",
        )
    return ipv4, ipv6


def run_restore(backups: BackupManager, name: str) -> int:
    try:
        report = backups.restore(name)
    except RestoreError as e:
        logger.error(str(e))
        return EXIT_FAILURE
    return EXIT_OK if report.ok else EXIT_FAILURE


def run_backup(backups: BackupManager, settings: Settings) -> int:
    result = backups.backup(settings.zone_ids)
    return EXIT_OK if result.ok else EXIT_FAILURE


def run_update(
    settings: Settings,
    client: CloudflareClient,
    resolver: IPResolver,
    notifier: Notifier,
) -> int:
    try:
        ipv4, ipv6 = resolve_addresses(resolver, settings)
    except IPUnavailable as e:
        logger.error(str(e))
        return EXIT_FAILURE

    reconciler = Reconciler(client=client, settings=settings, notifier=notifier)
    summary = reconciler.run(ipv4, ipv6)
    for outcome in summary.failed:
        logger.error(f"Failed to update {outcome.type} record for {outcome.name}: {outcome.message}")
    return EXIT_OK if summary.ok else EXIT_FAILURE


def run(argv: Optional[List[str]] = None, *, resolver: Optional[IPResolver] = None) -> int:
    """Run one invocation and return the exit status."""
    args = build_parser().parse_args(argv)
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    logger.info("cloudflare-ddns started")

    try:
        settings = load_settings(args.config, overrides_from_args(args))
    except ConfigError as e:
        logger.error(f"Configuration validation failed: {e}")
        return EXIT_FAILURE

    if settings.log_file:
        try:
            add_file_logging(settings.log_file, settings.log_cleanup_days)
        except OSError as e:
            logger.error(f"Cannot open log file {settings.log_file}: {e}")
            return EXIT_FAILURE

    client = create_client(settings)
    backups = BackupManager(
        client=client,
        backup_dir=settings.backup_dir,
        max_backups=settings.max_dns_backups,
    )

    if args.restore:
        status = run_restore(backups, args.restore)
    elif args.backup_only:
        status = run_backup(backups, settings)
    else:
        status = run_update(settings, client, resolver or IPResolver(), create_notifier(settings))
        if args.backup and run_backup(backups, settings) != EXIT_OK:
            status = EXIT_FAILURE

    if status == EXIT_OK:
        logger.info("cloudflare-ddns finished")
    else:
        logger.error("cloudflare-ddns finished with errors")
    return status


def main():
    """Main entry point."""
    try:
        sys.exit(run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
