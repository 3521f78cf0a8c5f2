"""Error taxonomy for cloudflare-ddns.

Configuration errors and a run with no usable IP family abort the whole run.
Everything else is scoped to one record, one zone or one backup and is
aggregated by the caller.
"""

from __future__ import annotations

from typing import Optional


class CloudflareDDNSError(Exception):
    """Base class for all cloudflare-ddns errors."""


class ConfigError(CloudflareDDNSError):
    """Malformed or missing configuration value."""


class IPUnavailable(CloudflareDDNSError):
    """No IP echo source returned a valid address for a family."""

    def __init__(self, family: str, message: str = ""):
        self.family = family
        super().__init__(message or f"Unable to retrieve {family} address from any source")


class APIError(CloudflareDDNSError):
    """The Cloudflare API rejected or failed to service a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class BackupError(CloudflareDDNSError):
    """A zone could not be fetched while taking a backup."""


class RestoreError(CloudflareDDNSError):
    """A backup could not be read or restored."""


class BackupNotFound(RestoreError):
    """The requested backup file does not exist."""


class NotifyError(CloudflareDDNSError):
    """A notification could not be delivered."""
