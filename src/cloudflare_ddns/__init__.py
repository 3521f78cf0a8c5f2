"""Dynamic DNS for Cloudflare zones."""

__version__ = "1.0.0"
