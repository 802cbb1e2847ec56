"""Channel transports: one implementation per delivery channel.

A transport first validates the stored destination (``prepare_destination``)
and then sends prepared content (``send``). Provider errors never raise out of
``send``; they come back as a failed TransportResult. A malformed destination
raises InvalidDestinationError before any network call is made.
"""

import asyncio
import json
import logging
import re
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Optional

import httpx
from pywebpush import WebPushException, webpush

from app.core.config import settings
from app.modules.dispatch.content import MessageContent
from app.modules.dispatch.exceptions import InvalidDestinationError
from app.modules.groups.models import Channel

logger = logging.getLogger(__name__)

INVALID_PUSH_SUBSCRIPTION = "Invalid push subscription"
INVALID_ISRAELI_PHONE = "Invalid Israeli phone number format"

ISRAELI_PHONE_PREFIXES = (
    "02", "03", "04", "08", "09",
    "050", "051", "052", "053", "054", "055", "058",
    "072", "073", "074", "076", "077", "078",
)


@dataclass
class TransportResult:
    """Result of a single send."""
    success: bool
    channel: str
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class ChannelTransport(ABC):
    """Base class for channel transports."""

    channel: Channel
    label: str = "Channel"

    def __init__(
        self,
        timeout: Optional[float] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.TRANSPORT_TIMEOUT_SECONDS
        self._http_transport = http_transport

    def is_configured(self) -> bool:
        return True

    def prepare_destination(self, raw: Optional[str]) -> Any:
        """Turn a stored destination into what ``send`` expects.

        Raises:
            InvalidDestinationError: If the destination is unusable
        """
        destination = (raw or "").strip()
        if not destination:
            raise InvalidDestinationError(f"Missing {self.label} destination")
        return destination

    @abstractmethod
    async def send(self, destination: Any, content: MessageContent) -> TransportResult:
        """Deliver content to a prepared destination."""
        pass

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._http_transport)

    def _success(self, provider_message_id: Optional[str] = None) -> TransportResult:
        return TransportResult(
            success=True,
            channel=self.channel.value,
            provider_message_id=provider_message_id,
        )

    def _failure(self, error: str) -> TransportResult:
        return TransportResult(success=False, channel=self.channel.value, error=error)

    def _not_configured(self) -> TransportResult:
        return self._failure(f"{self.label} provider not configured")


class EmailTransport(ChannelTransport):
    """Email over SMTP. The blocking SMTP session runs in the default executor."""

    channel = Channel.EMAIL
    label = "Email"

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: Optional[str] = None,
        use_tls: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout=timeout)
        self.host = host if host is not None else settings.SMTP_HOST
        self.port = port if port is not None else settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.from_email = from_email if from_email is not None else settings.SMTP_FROM_EMAIL
        self.use_tls = use_tls if use_tls is not None else settings.SMTP_TLS

    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def prepare_destination(self, raw: Optional[str]) -> str:
        destination = super().prepare_destination(raw)
        if "@" not in destination:
            raise InvalidDestinationError("Invalid email address")
        return destination

    async def send(self, destination: str, content: MessageContent) -> TransportResult:
        if not self.is_configured():
            return self._not_configured()

        msg = MIMEMultipart("alternative")
        msg["Subject"] = content.subject
        msg["From"] = self.from_email
        msg["To"] = destination
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(content.text, "plain", "utf-8"))
        if content.html:
            msg.attach(MIMEText(content.html, "html", "utf-8"))

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_smtp, destination, msg)
        except (smtplib.SMTPException, OSError) as e:
            return self._failure(str(e) or "SMTP error")

        return self._success(msg["Message-ID"])

    def _send_smtp(self, recipient: str, msg: MIMEMultipart) -> None:
        """Send email via SMTP (blocking operation)."""
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(self.from_email, recipient, msg.as_string())


class SmsTransport(ChannelTransport):
    """SMS through the Twilio Messages REST API."""

    channel = Channel.SMS
    label = "SMS"
    API_BASE = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        timeout: Optional[float] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, http_transport=http_transport)
        self.account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else settings.TWILIO_PHONE_NUMBER

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send(self, destination: str, content: MessageContent) -> TransportResult:
        if not self.is_configured():
            return self._not_configured()

        url = f"{self.API_BASE}/Accounts/{self.account_sid}/Messages.json"
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    data={"To": destination, "From": self.from_number, "Body": content.text},
                    auth=(self.account_sid, self.auth_token),
                )
            data = response.json()
        except httpx.TimeoutException:
            return self._failure("SMS provider timeout")
        except (httpx.HTTPError, ValueError) as e:
            return self._failure(str(e) or "SMS provider error")

        if response.status_code not in (200, 201):
            return self._failure(
                f"Twilio API error: {response.status_code} - {data.get('message', response.text)}"
            )
        return self._success(data.get("sid"))


class WhatsAppTransport(ChannelTransport):
    """WhatsApp text messages through the Meta Cloud API."""

    channel = Channel.WHATSAPP
    label = "WhatsApp"
    API_BASE = "https://graph.facebook.com"

    def __init__(
        self,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, http_transport=http_transport)
        self.phone_number_id = (
            phone_number_id if phone_number_id is not None else settings.WHATSAPP_PHONE_NUMBER_ID
        )
        self.access_token = access_token if access_token is not None else settings.WHATSAPP_ACCESS_TOKEN
        self.api_version = api_version or settings.WHATSAPP_API_VERSION

    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    def prepare_destination(self, raw: Optional[str]) -> str:
        # Cloud API wants the number in international form without "+"
        digits = re.sub(r"\D", "", super().prepare_destination(raw))
        if not digits:
            raise InvalidDestinationError("Invalid WhatsApp phone number")
        return digits

    async def send(self, destination: str, content: MessageContent) -> TransportResult:
        if not self.is_configured():
            return self._not_configured()

        url = f"{self.API_BASE}/{self.api_version}/{self.phone_number_id}/messages"
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                    json={
                        "messaging_product": "whatsapp",
                        "to": destination,
                        "type": "text",
                        "text": {"body": content.text},
                    },
                )
            data = response.json()
        except httpx.TimeoutException:
            return self._failure("WhatsApp provider timeout")
        except (httpx.HTTPError, ValueError) as e:
            return self._failure(str(e) or "WhatsApp provider error")

        if response.status_code != 200:
            message = data.get("error", {}).get("message", response.text)
            return self._failure(f"WhatsApp API error: {response.status_code} - {message}")

        messages = data.get("messages") or [{}]
        return self._success(messages[0].get("id"))


class PushTransport(ChannelTransport):
    """Web push with VAPID through pywebpush."""

    channel = Channel.PUSH
    label = "Push"

    def __init__(
        self,
        vapid_private_key: Optional[str] = None,
        vapid_claims_email: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout=timeout)
        self.vapid_private_key = (
            vapid_private_key if vapid_private_key is not None else settings.VAPID_PRIVATE_KEY
        )
        self.vapid_claims_email = vapid_claims_email or settings.VAPID_CLAIMS_EMAIL

    def is_configured(self) -> bool:
        return bool(self.vapid_private_key)

    def prepare_destination(self, raw: Optional[str]) -> dict:
        """Parse a serialized PushSubscription.

        Raises:
            InvalidDestinationError: If the JSON is malformed or lacks the
                endpoint or encryption keys
        """
        try:
            subscription = json.loads(raw or "")
        except (TypeError, ValueError, RecursionError):
            raise InvalidDestinationError(INVALID_PUSH_SUBSCRIPTION)

        if not isinstance(subscription, dict):
            raise InvalidDestinationError(INVALID_PUSH_SUBSCRIPTION)
        keys = subscription.get("keys")
        if (
            not isinstance(subscription.get("endpoint"), str)
            or not isinstance(keys, dict)
            or not isinstance(keys.get("p256dh"), str)
            or not isinstance(keys.get("auth"), str)
        ):
            raise InvalidDestinationError(INVALID_PUSH_SUBSCRIPTION)

        return {
            "endpoint": subscription["endpoint"],
            "keys": {"p256dh": keys["p256dh"], "auth": keys["auth"]},
        }

    async def send(self, destination: dict, content: MessageContent) -> TransportResult:
        if not self.is_configured():
            return self._not_configured()

        payload = json.dumps({"title": content.subject, "body": content.text, "data": content.data})
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_push, destination, payload)
        except WebPushException as e:
            return self._failure(str(e))

        return self._success()

    def _send_push(self, subscription: dict, payload: str) -> None:
        webpush(
            subscription_info=subscription,
            data=payload,
            vapid_private_key=self.vapid_private_key,
            vapid_claims={"sub": self.vapid_claims_email},
            timeout=self.timeout,
        )


def normalize_israeli_phone(phone: str) -> Optional[str]:
    """Normalize an Israeli number to its 10-digit local form.

    Accepts +972, 972 and 0 prefixes. Returns None for anything that is not a
    known Israeli area or mobile prefix.
    """
    cleaned = re.sub(r"[\s\-()]", "", phone)

    if cleaned.startswith("+972"):
        cleaned = "0" + cleaned[4:]
    elif cleaned.startswith("972"):
        cleaned = "0" + cleaned[3:]
    elif not cleaned.startswith("0"):
        return None

    if len(cleaned) != 10 or not cleaned.isdigit():
        return None
    if not cleaned.startswith(ISRAELI_PHONE_PREFIXES):
        return None
    return cleaned


class VoiceCallTransport(ChannelTransport):
    """Text-to-speech phone calls through the Yemot campaign API."""

    channel = Channel.VOICE_CALL
    label = "Voice call"

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, http_transport=http_transport)
        self.username = username if username is not None else settings.YEMOT_USERNAME
        self.password = password if password is not None else settings.YEMOT_PASSWORD
        self.api_url = (api_url or settings.YEMOT_API_URL).rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.username and self.password)

    def prepare_destination(self, raw: Optional[str]) -> str:
        phone = normalize_israeli_phone(super().prepare_destination(raw))
        if phone is None:
            raise InvalidDestinationError(INVALID_ISRAELI_PHONE)
        return phone

    async def send(self, destination: str, content: MessageContent) -> TransportResult:
        if not self.is_configured():
            return self._not_configured()

        params = {
            "token": f"{self.username}:{self.password}",
            "ttsMessage": content.text,
            "phones": destination,
            "repeatFile": "1",
            "ttsRate": "0",
        }
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.api_url}/SendTTS",
                    params=params,
                    headers={"Accept": "application/json"},
                )
            if response.status_code != 200:
                return self._failure(f"Yemot API error: {response.status_code} - {response.text}")
            data = response.json()
        except httpx.TimeoutException:
            return self._failure("Voice call provider timeout")
        except (httpx.HTTPError, ValueError) as e:
            return self._failure(str(e) or "Voice call provider error")

        status = data.get("responseStatus")
        if status == "OK":
            return self._success(str(data.get("CampaignId")) if data.get("CampaignId") else None)
        if status in ("ERROR", "EXCEPTION"):
            return self._failure(f"{data.get('message')} (Code: {data.get('messageCode', 'UNKNOWN')})")
        return self._failure(data.get("message") or "Unknown response status")


def build_default_transports() -> dict[Channel, ChannelTransport]:
    """Create one transport per channel from application settings."""
    transports: list[ChannelTransport] = [
        EmailTransport(),
        SmsTransport(),
        WhatsAppTransport(),
        PushTransport(),
        VoiceCallTransport(),
    ]
    for transport in transports:
        if not transport.is_configured():
            logger.warning(
                "Channel provider not configured",
                extra={"channel": transport.channel.value},
            )
    return {transport.channel: transport for transport in transports}
