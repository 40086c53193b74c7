"""
Notification Channels — deliver breach escalations via webhook, email, in-app.

Each channel is independent and fault-tolerant:
- Webhook: POST JSON to the configured URL (with SSRF protection)
- Email: send via SMTP (async)
- In-App: the breach event row is the notification; nothing to send

A dispatcher never raises: it returns {"success": bool, "detail": str}.
The router runs channels side by side, each under its own timeout.
"""

import asyncio
import ipaddress
from dataclasses import asdict, dataclass
from email.mime.text import MIMEText
from enum import StrEnum
from typing import Optional, Protocol
from urllib.parse import urlparse

import aiosmtplib
import httpx
import structlog

logger = structlog.get_logger(__name__)


class NotificationChannel(StrEnum):
    WEBHOOK = "webhook"
    EMAIL = "email"
    IN_APP = "in_app"


@dataclass
class BreachNotification:
    """What an escalation says about a breach."""
    breach_id: str
    organization_id: str
    metric_id: str
    metric_name: str
    severity: str
    status: str
    breach_value: float
    threshold_value: Optional[float]
    title: str
    message: str
    triggered_at: str
    sla_days: Optional[int] = None
    action_required: Optional[str] = None


class ChannelDispatcher(Protocol):
    async def dispatch(self, notification: BreachNotification, config: dict) -> dict:
        ...


# ── SSRF guard ─────────────────────────────────────────────────────────

_PRIVATE_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),  # link-local
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def validate_webhook_url(url: str) -> tuple[bool, str]:
    """Reject non-HTTP(S), credentialed, localhost and private-address URLs."""
    if not url:
        return False, "URL is empty"
    try:
        parsed = urlparse(url)
    except ValueError:
        return False, "Malformed URL"
    if parsed.scheme not in ("https", "http"):
        return False, f"Invalid scheme: {parsed.scheme}"
    if parsed.username or parsed.password:
        return False, "URLs with embedded credentials are not allowed"
    hostname = parsed.hostname
    if not hostname:
        return False, "No hostname in URL"
    if hostname.lower() in {"localhost", "0.0.0.0"}:
        return False, f"Localhost ({hostname}) is not allowed"
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return True, "ok"
    if any(ip in network for network in _PRIVATE_RANGES):
        return False, f"Private/reserved IP address: {hostname}"
    return True, "ok"


# ── Dispatchers ────────────────────────────────────────────────────────


class WebhookDispatcher:
    """POST the notification as JSON. Config: url, headers, timeout."""

    async def dispatch(self, notification: BreachNotification, config: dict) -> dict:
        url = config.get("url")
        if not url:
            return {"success": False, "detail": "No webhook URL configured"}

        is_valid, reason = validate_webhook_url(url)
        if not is_valid:
            logger.warning("webhook_ssrf_blocked", url=url, reason=reason)
            return {"success": False, "detail": f"SSRF blocked: {reason}"}

        headers = {"Content-Type": "application/json", **config.get("headers", {})}
        try:
            async with httpx.AsyncClient(timeout=config.get("timeout", 10)) as client:
                response = await client.post(url, json=asdict(notification), headers=headers)
        except httpx.HTTPError as e:
            logger.error("webhook_dispatch_error", breach_id=notification.breach_id, error=str(e))
            return {"success": False, "detail": str(e)}

        if response.status_code < 400:
            logger.info("webhook_escalation_sent", breach_id=notification.breach_id, status=response.status_code)
            return {"success": True, "detail": f"HTTP {response.status_code}"}
        logger.warning("webhook_escalation_failed", breach_id=notification.breach_id, status=response.status_code)
        return {"success": False, "detail": f"HTTP {response.status_code}"}


class EmailDispatcher:
    """
    Plain-text email via SMTP.

    Config: smtp_host, smtp_port, smtp_user, smtp_password, from_email, to_emails.
    """

    async def dispatch(self, notification: BreachNotification, config: dict) -> dict:
        to_emails = config.get("to_emails") or []
        if not to_emails:
            return {"success": False, "detail": "No recipient emails configured"}
        smtp_host = config.get("smtp_host", "")
        if not smtp_host:
            return {"success": False, "detail": "No SMTP host configured"}

        msg = MIMEText(self._body(notification))
        msg["Subject"] = notification.title
        msg["From"] = config.get("from_email", "governance@riskgov.io")
        msg["To"] = ", ".join(to_emails)

        try:
            await aiosmtplib.send(
                msg,
                hostname=smtp_host,
                port=config.get("smtp_port", 587),
                username=config.get("smtp_user") or None,
                password=config.get("smtp_password") or None,
                start_tls=True,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("email_dispatch_error", breach_id=notification.breach_id, error=str(e))
            return {"success": False, "detail": str(e)}

        logger.info("email_escalation_sent", breach_id=notification.breach_id, to=to_emails)
        return {"success": True, "detail": f"Sent to {len(to_emails)} recipients"}

    @staticmethod
    def _body(n: BreachNotification) -> str:
        lines = [
            f"Tolerance breach — {n.severity}",
            "=" * 50,
            "",
            n.message,
            "",
            f"Metric: {n.metric_name}",
            f"Observed value: {n.breach_value}",
        ]
        if n.threshold_value is not None:
            lines.append(f"Threshold: {n.threshold_value}")
        if n.action_required:
            lines.append(f"Action required: {n.action_required}")
        if n.sla_days is not None:
            lines.append(f"Response expected within {n.sla_days} day(s)")
        lines.append(f"Detected: {n.triggered_at}")
        return "\n".join(lines) + "\n"


class InAppDispatcher:
    """The breach_events row written by the lifecycle manager is the in-app record."""

    async def dispatch(self, notification: BreachNotification, config: dict) -> dict:
        logger.info("in_app_escalation_recorded", breach_id=notification.breach_id, severity=notification.severity)
        return {"success": True, "detail": "Recorded as in-app notification"}


class ChannelRouter:
    """
    Sends a notification to each requested channel concurrently. Each
    channel gets its own time budget; a failure or timeout stays in that
    channel's result.
    """

    def __init__(
        self,
        dispatchers: Optional[dict[NotificationChannel, ChannelDispatcher]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._dispatchers: dict[NotificationChannel, ChannelDispatcher] = dispatchers or {
            NotificationChannel.WEBHOOK: WebhookDispatcher(),
            NotificationChannel.EMAIL: EmailDispatcher(),
            NotificationChannel.IN_APP: InAppDispatcher(),
        }
        self.timeout_seconds = timeout_seconds

    async def _send(self, channel: NotificationChannel, notification: BreachNotification, config: dict) -> dict:
        dispatcher = self._dispatchers.get(channel)
        if dispatcher is None:
            return {"success": False, "detail": f"Unknown channel: {channel}"}
        try:
            return await asyncio.wait_for(dispatcher.dispatch(notification, config), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "channel_dispatch_timeout",
                channel=channel.value,
                breach_id=notification.breach_id,
                timeout_seconds=self.timeout_seconds,
            )
            return {"success": False, "detail": f"timed out after {self.timeout_seconds}s"}
        except Exception as e:
            logger.error(
                "channel_dispatch_error",
                channel=channel.value,
                breach_id=notification.breach_id,
                error=str(e),
            )
            return {"success": False, "detail": str(e)}

    async def dispatch(
        self,
        notification: BreachNotification,
        channel_configs: dict[NotificationChannel, dict],
    ) -> dict[str, dict]:
        """Returns channel name → delivery result."""
        channels = list(channel_configs)
        results = await asyncio.gather(
            *(self._send(channel, notification, channel_configs[channel]) for channel in channels)
        )
        return {channel.value: result for channel, result in zip(channels, results)}
