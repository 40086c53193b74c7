"""
Breach Escalation.

AMBER → metric owner contacts (amber rule recipients, else the metric owner).
RED   → risk officer / board contacts (red rule recipients, else the
        configured risk officer and board addresses).

Each channel is bounded by ESCALATION_TIMEOUT_SECONDS and delivery never
raises: a slow or failing channel is logged and reported in its own result,
the other channels still deliver, and the breach that triggered it stands.
"""

from typing import Optional

import structlog

from riskgov.appetite.channels import BreachNotification, ChannelRouter, NotificationChannel
from riskgov.appetite.schemas import EscalationRules, Severity, ZoneEscalation
from riskgov.config import settings

logger = structlog.get_logger(__name__)


class EscalationNotifier:
    """Resolve recipients for a severity and deliver within a time budget."""

    def __init__(
        self,
        router: Optional[ChannelRouter] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.escalation_timeout_seconds
        )
        self.router = router or ChannelRouter(timeout_seconds=self.timeout_seconds)

    @staticmethod
    def zone_rule(rules: EscalationRules, severity: Severity) -> ZoneEscalation:
        return rules.red if severity == Severity.RED else rules.amber

    @staticmethod
    def recipients(rule: ZoneEscalation, severity: Severity, owner_email: Optional[str]) -> list[str]:
        if rule.notify:
            return list(rule.notify)
        if severity == Severity.RED:
            return [*settings.risk_officer_emails, *settings.board_emails]
        return [owner_email] if owner_email else []

    def channel_configs(
        self, rule: ZoneEscalation, severity: Severity, owner_email: Optional[str]
    ) -> dict[NotificationChannel, dict]:
        configs: dict[NotificationChannel, dict] = {NotificationChannel.IN_APP: {}}

        to_emails = self.recipients(rule, severity, owner_email)
        if to_emails and settings.escalation_smtp_host:
            configs[NotificationChannel.EMAIL] = {
                "to_emails": to_emails,
                "smtp_host": settings.escalation_smtp_host,
                "smtp_port": settings.escalation_smtp_port,
                "smtp_user": settings.escalation_smtp_user,
                "smtp_password": settings.escalation_smtp_password,
                "from_email": settings.escalation_from_email,
            }

        url = rule.webhook_url or settings.escalation_webhook_url
        if url:
            configs[NotificationChannel.WEBHOOK] = {"url": url, "timeout": self.timeout_seconds}
        return configs

    async def escalate(
        self,
        notification: BreachNotification,
        rules: EscalationRules,
        owner_email: Optional[str] = None,
    ) -> dict:
        """Deliver the notification. Returns per-channel results, never raises."""
        severity = Severity(notification.severity)
        rule = self.zone_rule(rules, severity)
        notification.sla_days = rule.sla_days
        notification.action_required = rule.action_required
        configs = self.channel_configs(rule, severity, owner_email)

        try:
            results = await self.router.dispatch(notification, configs)
        except Exception as e:
            logger.error("escalation_failed", breach_id=notification.breach_id, error=str(e))
            return {"delivered": False, "detail": str(e)}

        delivered = any(r.get("success") for r in results.values())
        logger.info(
            "escalation_dispatched",
            breach_id=notification.breach_id,
            severity=severity.value,
            channels=list(results),
            delivered=delivered,
        )
        return {"delivered": delivered, "channels": results}
