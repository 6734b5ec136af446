"""
SMS and email gateways used for appointment reminders.

Both clients are blocking (``requests`` and ``smtplib``) and are run in a
worker thread so they never stall the event loop.
"""

import asyncio
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Protocol, Tuple, runtime_checkable

import requests

from ..exceptions import GatewayException
from ..utils.config import SchedulingSettings
from ..utils.validation import normalize_mobile_number

logger = logging.getLogger(__name__)

SMS_SCHEDULE_FORMAT = "%Y-%m-%d %I:%M %p"


@runtime_checkable
class SmsGateway(Protocol):
    async def schedule_reminder(self, phone: str, send_at: datetime, message: str) -> bool:
        """Queue ``message`` for delivery at ``send_at``; True when accepted."""
        ...


@runtime_checkable
class EmailGateway(Protocol):
    async def send_email(
        self, address: str, subject: str, plain_body: str, html_body: Optional[str] = None
    ) -> None:
        ...


class HttpSmsGateway:
    """Client for the clinic's scheduled-SMS HTTP API."""

    def __init__(
        self,
        api_url: str,
        api_token: Optional[str],
        sender_name: str,
        timeout: float = 10.0,
    ):
        self.api_url = api_url
        self.api_token = api_token
        self.sender_name = sender_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: SchedulingSettings) -> "HttpSmsGateway":
        return cls(
            api_url=settings.sms_api_url,
            api_token=settings.sms_api_token,
            sender_name=settings.sms_sender_name,
            timeout=settings.gateway_timeout_seconds,
        )

    def build_payload(self, phone: str, send_at: datetime, message: str) -> dict:
        """
        Build the request body for one scheduled message.

        Raises:
            GatewayException: If the phone number cannot be normalized
        """
        normalized = normalize_mobile_number(phone)
        if not normalized.is_valid:
            raise GatewayException(
                f"Invalid mobile number '{phone}'", channel="sms"
            )
        return {
            "api_token": self.api_token,
            "sender_name": self.sender_name,
            "phone_number": normalized.value,
            "scheduled_at": send_at.strftime(SMS_SCHEDULE_FORMAT),
            "message": message,
        }

    async def schedule_reminder(self, phone: str, send_at: datetime, message: str) -> bool:
        """
        Schedule an SMS reminder.

        Args:
            phone: Owner's mobile number, any common PH format
            send_at: Clinic-local delivery time
            message: Text to send

        Returns:
            True if the API accepted the message

        Raises:
            GatewayException: If the number is invalid or the API is unreachable
        """
        if not self.api_token:
            raise GatewayException("SMS API token is not configured", channel="sms")
        payload = self.build_payload(phone, send_at, message)
        try:
            response = await asyncio.to_thread(
                requests.post, self.api_url, json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise GatewayException(
                "SMS gateway unreachable", channel="sms", original_error=e
            ) from e

        if not response.ok:
            logger.warning(f"SMS gateway rejected message: {response.status_code} {response.text}")
            return False
        logger.info(
            f"SMS reminder scheduled for {payload['phone_number']} at {payload['scheduled_at']}"
        )
        return True


class SmtpEmailGateway:
    """Sends multipart (plain + HTML) emails over SMTP."""

    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_address: Optional[str] = None,
        use_starttls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address or username
        self.use_starttls = use_starttls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: SchedulingSettings) -> "SmtpEmailGateway":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.smtp_from,
            use_starttls=settings.smtp_use_starttls,
            timeout=settings.gateway_timeout_seconds,
        )

    def build_message(
        self, address: str, subject: str, plain_body: str, html_body: Optional[str] = None
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address or ""
        msg["To"] = address
        msg.attach(MIMEText(plain_body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))
        return msg

    def _send(self, msg: MIMEMultipart) -> None:
        if self.use_starttls:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)

    async def send_email(
        self, address: str, subject: str, plain_body: str, html_body: Optional[str] = None
    ) -> None:
        """
        Send one email.

        Raises:
            GatewayException: If SMTP is not configured or delivery fails
        """
        if not self.host or not self.from_address:
            raise GatewayException("SMTP configuration incomplete", channel="email")
        msg = self.build_message(address, subject, plain_body, html_body)
        try:
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise GatewayException(
                "Email delivery failed", channel="email", original_error=e
            ) from e
        logger.info(f"Email '{subject}' sent to {address}")


class RecordingSmsGateway:
    """Keeps scheduled messages in memory instead of sending them."""

    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.sent: List[Tuple[str, datetime, str]] = []

    async def schedule_reminder(self, phone: str, send_at: datetime, message: str) -> bool:
        self.sent.append((phone, send_at, message))
        return self.accept


class RecordingEmailGateway:
    """Keeps emails in memory instead of sending them."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str, Optional[str]]] = []

    async def send_email(
        self, address: str, subject: str, plain_body: str, html_body: Optional[str] = None
    ) -> None:
        self.sent.append((address, subject, plain_body, html_body))
