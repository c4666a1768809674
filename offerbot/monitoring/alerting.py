"""
Operator alerts for the offer keeper, posted to a webhook.

Alerts below `min_severity` are dropped, each AlertType is rate limited on
its own, and everything queued inside one batch window goes out as a single
POST. Slack and Discord payloads merge their attachments / embeds; the
generic payload is {"alerts": [...]} (a lone alert is posted unwrapped).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp

log = logging.getLogger("offerbot")

MAX_DETAIL_FIELDS = 5


class AlertSeverity(Enum):
    # Lower value is more severe
    CRITICAL = 1
    WARNING = 2
    INFO = 3


class AlertType(Enum):
    STARTUP = "startup"
    SHUTDOWN = "shutdown"
    SUBMISSION_FAILED = "submission_failed"
    RECONNECT_FAILED = "reconnect_failed"
    ORACLE_ERROR = "oracle_error"
    PRICE_UPDATE = "price_update"
    CUSTOM = "custom"


def _iso(timestamp_ms: int) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(timestamp_ms / 1000))


@dataclass
class Alert:
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)
    pair: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.alert_type.name,
            "severity": self.severity.name,
            "title": self.title,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": _iso(self.timestamp_ms),
            "details": self.details,
            "pair": self.pair,
        }


@dataclass
class AlertConfig:
    webhook_url: Optional[str] = None
    # generic | slack | discord
    webhook_type: str = "generic"
    min_severity: AlertSeverity = AlertSeverity.WARNING
    # Per AlertType
    rate_limit_seconds: int = 60
    batch_window_ms: int = 5000
    enabled: bool = True
    include_details: bool = True
    bot_name: str = "OfferBot"


_COLOURS = {
    AlertSeverity.CRITICAL: 0xFF0000,
    AlertSeverity.WARNING: 0xFFA500,
    AlertSeverity.INFO: 0x0000FF,
}
_ICONS = {
    AlertSeverity.CRITICAL: "🚨",
    AlertSeverity.WARNING: "⚠️",
    AlertSeverity.INFO: "ℹ️",
}
# Payload key whose list is concatenated when several alerts share a POST
_MERGE_KEYS = {"slack": "attachments", "discord": "embeds"}


def _fields(alert: Alert, config: AlertConfig, name_key: str, inline_key: str) -> List[Dict[str, Any]]:
    pairs = []
    if alert.pair:
        pairs.append(("Pair", alert.pair))
    pairs.append(("Type", alert.alert_type.name))
    if config.include_details:
        pairs.extend((k, str(v)) for k, v in list(alert.details.items())[:MAX_DETAIL_FIELDS])
    return [{name_key: name, "value": value, inline_key: True} for name, value in pairs]


class WebhookFormatter:
    @staticmethod
    def format_generic(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        return alert.to_dict()

    @staticmethod
    def format_slack(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        return {
            "username": config.bot_name,
            "icon_emoji": ":robot_face:",
            "attachments": [{
                "color": f"#{_COLOURS.get(alert.severity, 0x808080):06X}",
                "title": f"{_ICONS.get(alert.severity, '📢')} {alert.title}",
                "text": alert.message,
                "fields": _fields(alert, config, "title", "short"),
                "footer": f"{config.bot_name} | {alert.severity.name}",
                "ts": alert.timestamp_ms // 1000,
            }],
        }

    @staticmethod
    def format_discord(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        return {
            "username": config.bot_name,
            "embeds": [{
                "title": alert.title,
                "description": alert.message,
                "color": _COLOURS.get(alert.severity, 0x808080),
                "fields": _fields(alert, config, "name", "inline"),
                "footer": {"text": f"{config.bot_name} | {alert.severity.name}"},
                "timestamp": _iso(alert.timestamp_ms),
            }],
        }


_FORMATTERS: Dict[str, Callable[[Alert, AlertConfig], Dict[str, Any]]] = {
    "generic": WebhookFormatter.format_generic,
    "slack": WebhookFormatter.format_slack,
    "discord": WebhookFormatter.format_discord,
}


class AlertManager:
    """
    Usage:
        alerts = AlertManager(AlertConfig(webhook_url=url, webhook_type="slack"))
        await alerts.alert_submission_failed("offer_create", "tecUNFUNDED_OFFER", tx_hash, pair="RLA/USD")
        ...
        await alerts.flush()
    """

    def __init__(self, config: Optional[AlertConfig] = None) -> None:
        self.config = config or AlertConfig()
        self._last_sent_ms: Dict[AlertType, int] = {}
        self._pending: List[Alert] = []
        self._batch_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    async def send_alert(self, alert: Alert) -> bool:
        """Queue for the current batch. False when disabled, below threshold or rate limited."""
        if not self.config.enabled:
            return False
        if not self.config.webhook_url:
            log.debug(json.dumps({"event": "alert_skipped", "reason": "no_webhook", "title": alert.title}))
            return False
        if alert.severity.value > self.config.min_severity.value:
            return False

        now_ms = int(time.time() * 1000)
        if now_ms - self._last_sent_ms.get(alert.alert_type, 0) < self.config.rate_limit_seconds * 1000:
            log.debug(json.dumps({"event": "alert_rate_limited", "type": alert.alert_type.name}))
            return False

        async with self._lock:
            self._pending.append(alert)
            self._last_sent_ms[alert.alert_type] = now_ms
            if self._batch_task is None or self._batch_task.done():
                self._batch_task = asyncio.create_task(self._batch_deliver(), name="alert-batch")
        return True

    async def flush(self) -> None:
        """Wait for the in-flight batch, e.g. before the event loop closes."""
        task = self._batch_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def _batch_deliver(self) -> None:
        await asyncio.sleep(self.config.batch_window_ms / 1000)
        async with self._lock:
            alerts, self._pending = self._pending, []
        if len(alerts) == 1:
            await self._deliver_single(alerts[0])
        elif alerts:
            await self._deliver_batch(alerts)

    async def _deliver_single(self, alert: Alert) -> bool:
        return await self._http_post(self._format_alert(alert))

    async def _deliver_batch(self, alerts: List[Alert]) -> bool:
        merge_key = _MERGE_KEYS.get(self.config.webhook_type)
        if merge_key is None:
            return await self._http_post({"alerts": [a.to_dict() for a in alerts]})
        payload = self._format_alert(alerts[0])
        for alert in alerts[1:]:
            payload[merge_key].extend(self._format_alert(alert)[merge_key])
        return await self._http_post(payload)

    def _format_alert(self, alert: Alert) -> Dict[str, Any]:
        formatter = _FORMATTERS.get(self.config.webhook_type, WebhookFormatter.format_generic)
        return formatter(alert, self.config)

    async def _http_post(self, payload: Dict[str, Any], retries: int = 2) -> bool:
        if not self.config.webhook_url:
            return False

        async with aiohttp.ClientSession() as session:
            for attempt in range(1, retries + 2):
                try:
                    async with session.post(
                        self.config.webhook_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=10),
                    ) as resp:
                        if resp.status < 300:
                            return True
                        error = f"HTTP {resp.status}"
                except asyncio.TimeoutError:
                    error = "timeout"
                except aiohttp.ClientError as exc:
                    error = f"{type(exc).__name__}: {exc}"

                log.warning(json.dumps({"event": "alert_delivery_failed", "attempt": attempt, "error": error}))
                if attempt <= retries:
                    await asyncio.sleep(attempt)
        return False

    # ------------------------------------------------------------------ #
    # Offer keeper alerts
    # ------------------------------------------------------------------ #

    async def alert_startup(self, account: str, pair: str, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.STARTUP,
            severity=AlertSeverity.INFO,
            title="Bot Started",
            message=f"{self.config.bot_name} keeping {pair} offer for {account}",
            pair=pair,
            details={"account": account, **details},
        ))

    async def alert_shutdown(self, reason: str = "normal", **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.SHUTDOWN,
            severity=AlertSeverity.INFO if reason == "normal" else AlertSeverity.WARNING,
            title="Bot Shutdown",
            message=f"{self.config.bot_name} shutting down: {reason}",
            details=details,
        ))

    async def alert_submission_failed(self, kind: str, result_code: str, tx_hash: Optional[str] = None,
                                      pair: Optional[str] = None, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.SUBMISSION_FAILED,
            severity=AlertSeverity.CRITICAL,
            title="Transaction Failed",
            message=f"{kind} settled with {result_code}",
            pair=pair,
            details={"result_code": result_code, "tx_hash": tx_hash, **details},
        ))

    async def alert_reconnect_failed(self, error: str, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.RECONNECT_FAILED,
            severity=AlertSeverity.CRITICAL,
            title="Ledger Reconnect Failed",
            message=error,
            details=details,
        ))

    async def alert_oracle_error(self, error: str, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.ORACLE_ERROR,
            severity=AlertSeverity.WARNING,
            title="Valuation Update Failed",
            message=error,
            details=details,
        ))

    async def alert_price_update(self, old_value: Optional[float], new_value: float, change_pct: float,
                                 pair: Optional[str] = None, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.PRICE_UPDATE,
            severity=AlertSeverity.INFO,
            title="Offer Repriced",
            message=f"Valuation moved {change_pct:+.2f}% to {new_value:,.0f}",
            pair=pair,
            details={"old_value": old_value, "new_value": new_value, "change_pct": round(change_pct, 4), **details},
        ))


def configure_alerts(
    webhook_url: Optional[str] = None,
    webhook_type: str = "generic",
    min_severity: AlertSeverity = AlertSeverity.WARNING,
    enabled: bool = True,
    bot_name: str = "OfferBot",
) -> AlertManager:
    return AlertManager(AlertConfig(
        webhook_url=webhook_url,
        webhook_type=webhook_type,
        min_severity=min_severity,
        enabled=enabled,
        bot_name=bot_name,
    ))
