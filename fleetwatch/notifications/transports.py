"""Notification transport implementations.

A transport delivers one alert to one recipient over one channel and
reports the outcome as a ``DeliveryResult``. Concrete transports exist for
webhooks and Slack. ``LogTransport`` stands in for channel types without a
configured gateway: it logs the notification and reports a bounce, so the
alert counts as undelivered on that channel. A CircuitBreaker decorator wraps any transport to stop
hammering an unhealthy downstream.

Pattern: Decorator (CircuitBreaker wraps any NotificationTransport).
"""

import enum
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from fleetwatch.monitoring.schemas import (
    Alert,
    AlertRecipient,
    NotificationChannel,
    utc_now,
)

logger = logging.getLogger(__name__)

# 4xx codes worth retrying; every other 4xx is a permanent bounce
_RETRYABLE_CLIENT_ERRORS = frozenset({408, 425, 429})


@dataclass
class DeliveryResult:
    """Outcome of a single send attempt.

    ``status`` is ``sent`` (accepted, no confirmation), ``delivered``,
    ``failed`` (retryable) or ``bounced`` (permanent).
    """

    status: str
    error_message: str | None = None
    delivered_at: datetime | None = field(default=None)

    @property
    def ok(self) -> bool:
        return self.status in ("sent", "delivered")

    @classmethod
    def delivered(cls) -> "DeliveryResult":
        return cls(status="delivered", delivered_at=utc_now())

    @classmethod
    def failed(cls, message: str) -> "DeliveryResult":
        return cls(status="failed", error_message=message)

    @classmethod
    def bounced(cls, message: str) -> "DeliveryResult":
        return cls(status="bounced", error_message=message)


def result_for_response(resp: httpx.Response) -> DeliveryResult:
    """Map an HTTP response to a delivery outcome."""
    if resp.is_success:
        return DeliveryResult.delivered()
    message = f"HTTP {resp.status_code}"
    if 400 <= resp.status_code < 500 and resp.status_code not in _RETRYABLE_CLIENT_ERRORS:
        return DeliveryResult.bounced(message)
    return DeliveryResult.failed(message)


class NotificationTransport(ABC):
    """Abstract base for notification transports."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this transport (e.g. 'webhook', 'slack')."""

    @abstractmethod
    async def send(
        self,
        channel: NotificationChannel,
        recipient: AlertRecipient,
        alert: Alert,
    ) -> DeliveryResult:
        """Deliver an alert to one recipient over one channel.

        Args:
            channel: Channel config (may carry per-channel overrides).
            recipient: Target recipient.
            alert: Alert to deliver.

        Returns:
            DeliveryResult for this attempt.
        """


class WebhookTransport(NotificationTransport):
    """Delivers alerts as JSON POST to an HTTP endpoint.

    ``channel_config["url"]`` overrides the default URL. Creates a new
    ``httpx.AsyncClient`` per call (short-lived, no pooling).
    """

    def __init__(
        self,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "webhook"

    def _build_payload(self, recipient: AlertRecipient, alert: Alert) -> dict:
        return {
            "alert_id": alert.alert_id,
            "entity_id": alert.entity_id,
            "alert_type": alert.alert_type,
            "severity": alert.severity,
            "title": alert.title,
            "description": alert.description,
            "triggered_by": alert.triggered_by,
            "trigger_value": alert.trigger_value,
            "threshold_value": alert.threshold_value,
            "triggered_at": alert.triggered_at.isoformat(),
            "recommended_actions": alert.recommended_actions,
            "correlation_group": alert.correlation_group,
            "recipient_id": recipient.recipient_id,
        }

    async def send(
        self,
        channel: NotificationChannel,
        recipient: AlertRecipient,
        alert: Alert,
    ) -> DeliveryResult:
        url = channel.channel_config.get("url") or self._url
        if not url:
            return DeliveryResult.bounced("no webhook url configured")

        headers = {**self._headers, **channel.channel_config.get("headers", {})}
        payload = self._build_payload(recipient, alert)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException:
            logger.warning("Webhook %s timed out for alert %s", url, alert.alert_id)
            return DeliveryResult.failed("timeout")
        except httpx.HTTPError as e:
            logger.warning("Webhook %s failed for alert %s: %s", url, alert.alert_id, e)
            return DeliveryResult.failed(str(e))

        result = result_for_response(resp)
        if not result.ok:
            logger.warning(
                "Webhook %s returned %d for alert %s",
                url, resp.status_code, alert.alert_id,
            )
        return result


class SlackTransport(NotificationTransport):
    """Delivers alerts to Slack via incoming webhook, using Block Kit."""

    SEVERITY_EMOJI = {
        "emergency": ":rotating_light:",
        "critical": ":red_circle:",
        "warning": ":large_orange_circle:",
        "info": ":large_blue_circle:",
    }

    def __init__(
        self,
        webhook_url: str,
        channel: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "slack"

    def _format_message(
        self, channel: NotificationChannel, recipient: AlertRecipient, alert: Alert,
    ) -> dict:
        emoji = self.SEVERITY_EMOJI.get(alert.severity, ":white_circle:")
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{emoji} {alert.title}"},
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": alert.description},
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"*Severity:* {alert.severity} | "
                            f"*Type:* {alert.alert_type} | "
                            f"*Entity:* {alert.entity_id} | "
                            f"*For:* {recipient.recipient_id}"
                        ),
                    },
                ],
            },
        ]
        payload: dict = {"blocks": blocks}
        slack_channel = channel.channel_config.get("channel") or self._channel
        if slack_channel:
            payload["channel"] = slack_channel
        return payload

    async def send(
        self,
        channel: NotificationChannel,
        recipient: AlertRecipient,
        alert: Alert,
    ) -> DeliveryResult:
        payload = self._format_message(channel, recipient, alert)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._webhook_url, json=payload)
        except httpx.TimeoutException:
            logger.warning("Slack webhook timed out for alert %s", alert.alert_id)
            return DeliveryResult.failed("timeout")
        except httpx.HTTPError as e:
            logger.warning("Slack webhook failed for alert %s: %s", alert.alert_id, e)
            return DeliveryResult.failed(str(e))

        result = result_for_response(resp)
        if not result.ok:
            logger.warning(
                "Slack webhook returned %d for alert %s", resp.status_code, alert.alert_id,
            )
        return result


class LogTransport(NotificationTransport):
    """Logs the notification and bounces it; no gateway is configured."""

    def __init__(self, channel_type: str = "log") -> None:
        self._channel_type = channel_type

    @property
    def name(self) -> str:
        return self._channel_type

    async def send(
        self,
        channel: NotificationChannel,
        recipient: AlertRecipient,
        alert: Alert,
    ) -> DeliveryResult:
        logger.info(
            "[%s] %s -> %s: %s (%s)",
            channel.channel_type,
            alert.alert_id,
            recipient.recipient_id,
            alert.title,
            alert.severity,
        )
        return DeliveryResult.bounced(f"no gateway configured for {channel.channel_type}")


class CircuitState(enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(NotificationTransport):
    """Wraps a NotificationTransport with circuit breaker protection.

    State machine: CLOSED -> OPEN -> HALF_OPEN -> CLOSED.

    - CLOSED: All sends pass through. Consecutive failures tracked.
    - OPEN: Sends fail immediately. After recovery_timeout, moves to HALF_OPEN.
    - HALF_OPEN: One probe allowed. Success -> CLOSED, failure -> OPEN.

    Bounces are the recipient's problem, not the downstream's, and don't
    count as failures.
    """

    def __init__(
        self,
        transport: NotificationTransport,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._transport = transport
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def name(self) -> str:
        return self._transport.name

    @property
    def state(self) -> CircuitState:
        return self._state

    async def send(
        self,
        channel: NotificationChannel,
        recipient: AlertRecipient,
        alert: Alert,
    ) -> DeliveryResult:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit breaker %s: OPEN -> HALF_OPEN (recovery probe)", self.name,
                )
            else:
                logger.debug(
                    "Circuit breaker %s: OPEN, rejecting alert %s",
                    self.name, alert.alert_id,
                )
                return DeliveryResult.failed("circuit open")

        result = await self._transport.send(channel, recipient, alert)

        if result.status != "failed":
            if self._state == CircuitState.HALF_OPEN:
                logger.info(
                    "Circuit breaker %s: HALF_OPEN -> CLOSED (probe succeeded)", self.name,
                )
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit breaker %s: HALF_OPEN -> OPEN (probe failed)", self.name,
                )
            elif self._consecutive_failures >= self._failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit breaker %s: CLOSED -> OPEN after %d failures",
                    self.name, self._consecutive_failures,
                )

        return result


def build_transports(
    webhook_url: str | None = None,
    slack_webhook_url: str | None = None,
    slack_channel: str | None = None,
    timeout: float = 10.0,
) -> dict[str, NotificationTransport]:
    """Transport table keyed by channel type.

    Webhook and Teams channels post JSON to ``channel_config["url"]`` (or
    the default webhook URL). Slack is only wired when a webhook URL is
    configured. Email, SMS and push have no gateway here; they are logged
    and reported as bounced.
    """
    transports: dict[str, NotificationTransport] = {
        "webhook": WebhookTransport(url=webhook_url, timeout=timeout),
        "teams": WebhookTransport(timeout=timeout),
        "email": LogTransport("email"),
        "sms": LogTransport("sms"),
        "push": LogTransport("push"),
    }
    if slack_webhook_url:
        transports["slack"] = SlackTransport(
            slack_webhook_url, channel=slack_channel, timeout=timeout,
        )
    return transports
