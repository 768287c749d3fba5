from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr

import aiosmtplib
import httpx

from consultdesk.core.config import Settings
from consultdesk.core.errors import TransportFailure

logger = logging.getLogger("consultdesk.notifications")


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    channel: str
    destination: str
    delivered: bool
    reference: str | None = None
    failure_reason: str | None = None


def _sanitize_header(value: str, max_length: int = 998) -> str:
    return value.replace("\r", " ").replace("\n", " ").strip()[:max_length]


class NotificationChannel(ABC):
    """Outbound delivery channel. ``send`` reports failures in the result and never raises."""

    name = ""

    @property
    @abstractmethod
    def is_configured(self) -> bool: ...

    async def send(
        self,
        destination: str,
        subject: str | None,
        body: str,
        *,
        html_body: str | None = None,
    ) -> DeliveryResult:
        if not self.is_configured:
            logger.info("notification.skipped", extra={"channel": self.name, "recipient": destination})
            return DeliveryResult(
                channel=self.name,
                destination=destination,
                delivered=False,
                failure_reason=f"{self.display_name} not configured",
            )

        try:
            reference = await self._deliver(destination, subject, body, html_body)
        except Exception as exc:
            logger.warning(
                "notification.failed",
                extra={"channel": self.name, "recipient": destination, "error": str(exc)},
            )
            return DeliveryResult(
                channel=self.name,
                destination=destination,
                delivered=False,
                failure_reason=str(exc) or exc.__class__.__name__,
            )

        logger.info(
            "notification.delivered",
            extra={"channel": self.name, "recipient": destination, "reference": reference},
        )
        return DeliveryResult(channel=self.name, destination=destination, delivered=True, reference=reference)

    @property
    def display_name(self) -> str:
        return self.name.capitalize()

    @abstractmethod
    async def _deliver(self, destination: str, subject: str | None, body: str, html_body: str | None) -> str | None:
        """Perform the delivery and return the provider's message reference."""


class EmailChannel(NotificationChannel):
    name = "email"

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str,
        password: str,
        from_name: str,
        use_tls: bool = False,
        start_tls: bool = True,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from_name = from_name
        self._use_tls = use_tls
        self._start_tls = start_tls
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> EmailChannel:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_name=settings.smtp_from_name,
            use_tls=settings.smtp_use_tls,
            start_tls=settings.smtp_start_tls,
            timeout_seconds=settings.smtp_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._username and self._password)

    async def _deliver(self, destination: str, subject: str | None, body: str, html_body: str | None) -> str | None:
        message = EmailMessage()
        message["From"] = formataddr((_sanitize_header(self._from_name, 100), self._username))
        message["To"] = _sanitize_header(destination)
        message["Subject"] = _sanitize_header(subject or "", 200)
        message.set_content(body)
        if html_body:
            message.add_alternative(html_body, subtype="html")

        errors, response = await aiosmtplib.send(
            message,
            hostname=self._host,
            port=self._port,
            username=self._username,
            password=self._password,
            use_tls=self._use_tls,
            start_tls=self._start_tls if not self._use_tls else False,
            timeout=self._timeout_seconds,
        )
        if errors:
            rejected = ", ".join(sorted(errors))
            raise TransportFailure(f"Recipients rejected: {rejected}")
        return response or None


class WhatsAppChannel(NotificationChannel):
    name = "whatsapp"

    def __init__(
        self,
        *,
        api_url: str,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> WhatsAppChannel:
        return cls(
            api_url=settings.twilio_api_url,
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_whatsapp_from,
            timeout_seconds=settings.twilio_timeout_seconds,
        )

    @property
    def display_name(self) -> str:
        return "WhatsApp"

    @property
    def is_configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self._from_number)

    async def _deliver(self, destination: str, subject: str | None, body: str, html_body: str | None) -> str | None:
        text = f"{subject}\n\n{body}" if subject else body
        url = f"{self._api_url}/Accounts/{self._account_sid}/Messages.json"
        async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
            response = await client.post(
                url,
                auth=(self._account_sid, self._auth_token),
                data={
                    "From": f"whatsapp:{self._from_number}",
                    "To": f"whatsapp:{destination}",
                    "Body": text[:1600],
                },
            )
            if response.is_error:
                raise TransportFailure(f"WhatsApp provider returned HTTP {response.status_code}")
            payload = response.json()
        sid = payload.get("sid") if isinstance(payload, dict) else None
        return str(sid) if sid else None
