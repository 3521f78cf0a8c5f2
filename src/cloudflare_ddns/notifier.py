"""Best-effort notifications about created and updated records."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import requests

from cloudflare_ddns.exceptions import NotifyError
from cloudflare_ddns.models import NotifyEvent

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


def format_message(event: NotifyEvent) -> str:
    return f"{event.record_name} DNS {event.record_type} record {event.action.value} to: {event.ip}"


class Notifier(ABC):
    """Fire-and-forget notifier. `notify` never raises."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def send(self, event: NotifyEvent) -> None:
        """Deliver one event, raising NotifyError on failure."""
        pass

    def notify(self, event: NotifyEvent) -> None:
        try:
            self.send(event)
        except NotifyError as e:
            logger.error(
                f"{self.name} notification failed for {event.record_name} ({event.record_type}): {e}"
            )


class NullNotifier(Notifier):
    @property
    def name(self) -> str:
        return "Disabled"

    def send(self, event: NotifyEvent) -> None:
        pass


class TelegramNotifier(Notifier):
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        api_url: str = TELEGRAM_API_URL,
        timeout_seconds: float = 10.0,
    ):
        self._url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._timeout = timeout_seconds
        self._session = requests.Session()

    @property
    def name(self) -> str:
        return "Telegram"

    def send(self, event: NotifyEvent) -> None:
        data = {"chat_id": self._chat_id, "text": format_message(event)}
        try:
            response = self._session.post(self._url, json=data, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            # The URL embeds the bot token, so only the exception type is reported.
            raise NotifyError(f"request failed ({type(e).__name__})") from None
        try:
            body = response.json()
        except ValueError:
            raise NotifyError(f"invalid response (HTTP {response.status_code})") from None

        if not isinstance(body, dict) or body.get("ok") is not True:
            description = body.get("description") if isinstance(body, dict) else None
            raise NotifyError(description or f"delivery rejected (HTTP {response.status_code})")
        logger.debug(f"Telegram notification sent for {event.record_name} ({event.record_type})")
