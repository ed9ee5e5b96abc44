"""SMS notifier.

Sends availability alerts as SMS through the Twilio REST API. Alerts pass
through `NotificationGate` first; gate state is only updated after the
message has actually been accepted by Twilio.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

import pytz
import requests

from . import config
from .gate import NotificationGate
from .scraper import StoreAvailability, Variant
from .utils import HTTPError, get_http_session, retryable_request

logger = logging.getLogger(__name__)

TEST_MESSAGE = "iPhone Checker Test Message - Your notifications are working! 📱"


class NotificationTransportError(Exception):
    """The SMS transport did not accept the message."""


class NotificationSender(Protocol):
    def send(self, to_address: str, from_address: str, body: str) -> str:
        ...


@retryable_request
def _post(session: requests.Session, url: str, **kwargs) -> requests.Response:
    return session.post(url, **kwargs)


class TwilioSender:
    """Deliver SMS via ``POST /Accounts/<sid>/Messages.json``."""

    def __init__(
        self,
        account_sid: Optional[str] = config.TWILIO_ACCOUNT_SID,
        auth_token: Optional[str] = config.TWILIO_AUTH_TOKEN,
        *,
        api_base: str = config.TWILIO_API_BASE,
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._session = session
        if self.configured:
            logger.info("Twilio client initialized successfully")
        else:
            logger.warning("Twilio credentials not configured - SMS notifications disabled")

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token)

    def send(self, to_address: str, from_address: str, body: str) -> str:
        if not self.configured:
            raise NotificationTransportError("Twilio credentials not configured")

        url = f"{self.api_base}/Accounts/{self.account_sid}/Messages.json"
        close_session = False
        session = self._session
        if session is None:
            session = get_http_session()
            close_session = True
        try:
            resp = _post(
                session,
                url,
                data={"To": to_address, "From": from_address, "Body": body},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
            payload = resp.json()
        except (HTTPError, ValueError) as e:
            raise NotificationTransportError(str(e)) from e
        finally:
            if close_session:
                session.close()

        sid = payload.get("sid") if isinstance(payload, dict) else None
        if not sid:
            raise NotificationTransportError("Twilio response carried no message sid")
        return sid


def format_alert(
    store: StoreAvailability,
    variant: Variant,
    *,
    product_name: str = config.PRODUCT_NAME,
    purchase_url: str = config.BASE_URL,
    sent_at: str = "",
) -> str:
    lines = [
        "🚨 iPhone AVAILABLE! 🚨",
        "",
        f"{product_name} {variant.storage} ({variant.color})",
        f"Store: {store.name}",
        f"Address: {store.address or 'Check Apple Store'}",
        "",
        f"Quick link: {purchase_url}",
        "",
        "Act fast - limited stock!",
    ]
    if sent_at:
        lines.append(f"Time: {sent_at}")
    return "\n".join(lines)


class AvailabilityNotifier:
    """Gate, format and send availability alerts."""

    def __init__(
        self,
        sender: NotificationSender,
        gate: NotificationGate,
        *,
        phone_to: Optional[str] = config.PHONE_TO,
        phone_from: Optional[str] = config.TWILIO_PHONE_FROM,
        product_name: str = config.PRODUCT_NAME,
        purchase_url: str = config.BASE_URL,
        timezone: str = config.ALERT_TIMEZONE,
    ) -> None:
        self.sender = sender
        self.gate = gate
        self.phone_to = phone_to
        self.phone_from = phone_from
        self.product_name = product_name
        self.purchase_url = purchase_url
        self.timezone = pytz.timezone(timezone)

    @property
    def enabled(self) -> bool:
        configured = getattr(self.sender, "configured", True)
        return bool(configured and self.phone_to and self.phone_from)

    def _local_time(self) -> str:
        # a naive clock reading is host-local time; astimezone converts either kind
        return self.gate.clock.now().astimezone(self.timezone).strftime("%d/%m/%Y, %I:%M:%S %p")

    def notify_available(self, store: StoreAvailability, variant: Variant) -> bool:
        """Send one alert for ``variant`` at ``store``. Returns True when delivered."""
        if not self.enabled:
            logger.error("SMS sender not configured - cannot send availability alert")
            return False

        if not self.gate.should_notify(store.store_id):
            return False

        body = format_alert(
            store,
            variant,
            product_name=self.product_name,
            purchase_url=self.purchase_url,
            sent_at=self._local_time(),
        )
        try:
            sid = self.sender.send(self.phone_to, self.phone_from, body)
        except NotificationTransportError:
            logger.exception("Failed to send SMS notification for store %s", store.store_id)
            return False

        self.gate.record_sent(store.store_id)
        logger.info(
            "SMS notification sent successfully (messageId=%s, store=%s, storeId=%s)",
            sid, store.name, store.store_id,
        )
        return True

    def send_test_message(self) -> bool:
        if not self.enabled:
            logger.error("SMS sender not configured - cannot send test SMS")
            return False
        try:
            sid = self.sender.send(self.phone_to, self.phone_from, TEST_MESSAGE)
        except NotificationTransportError:
            logger.exception("Failed to send test SMS")
            return False
        logger.info("Test SMS sent successfully (messageId=%s)", sid)
        return True

    def stats(self) -> dict:
        return self.gate.stats()


__all__ = [
    "NotificationTransportError",
    "NotificationSender",
    "TwilioSender",
    "AvailabilityNotifier",
    "format_alert",
    "TEST_MESSAGE",
]
