"""
ResilientConnection: liveness tracking and recovery for the shared ledger client.

Responsibilities:
- Bounded-retry initial connect with stepped backoff (fatal StartupError on exhaustion)
- ensure_connected() before every ledger operation
- Disconnect-then-reconnect recovery that never aborts the owning loop

Ownership:
    This is the only component allowed to connect or disconnect the client.
    Everyone else reads `client` and calls ensure_connected().
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, TYPE_CHECKING

from offerbot.errors import LedgerConnectionError, StartupError

if TYPE_CHECKING:
    from offerbot.execution.state import ReconciliationState
    from offerbot.infra.ledger_client import LedgerClient
    from offerbot.monitoring.metrics import OfferBotMetrics

log = logging.getLogger("offerbot")


@dataclass
class ConnectionConfig:
    """Configuration for ResilientConnection."""
    max_retries: int = 3
    # Initial connect waits min(backoff_step_sec * attempt, backoff_max_sec)
    backoff_step_sec: float = 5.0
    backoff_max_sec: float = 30.0
    # Fixed pause between disconnect and reconnect
    reconnect_delay_sec: float = 5.0

    log_event_callback: Optional[Callable[..., None]] = None


def backoff_delay(attempt: int, step_sec: float = 5.0, max_sec: float = 30.0) -> float:
    """Wait before retry number `attempt` (1-based)."""
    return min(step_sec * attempt, max_sec)


class ResilientConnection:
    """
    Wraps a LedgerClient and keeps it connected.

    Usage:
        conn = ResilientConnection(client, state)
        await conn.connect_initial()        # StartupError if it never comes up

        # every cycle
        await conn.ensure_connected()       # LedgerConnectionError on failure
        offers = await conn.client.list_offers(conn.client.address)
    """

    def __init__(
        self,
        client: "LedgerClient",
        state: "ReconciliationState",
        config: Optional[ConnectionConfig] = None,
        metrics: Optional["OfferBotMetrics"] = None,
    ) -> None:
        self._client = client
        self.state = state
        self.config = config or ConnectionConfig()
        self.metrics = metrics
        self._reconnect_lock = asyncio.Lock()
        self._closed = False

        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, json.dumps({"event": event, **kwargs}))

    @property
    def client(self) -> "LedgerClient":
        return self._client

    @property
    def account(self) -> str:
        return self._client.address

    def is_connected(self) -> bool:
        try:
            return self._client.is_connected()
        except Exception:
            return False

    def _set_connected_gauge(self) -> None:
        if self.metrics:
            self.metrics.connected.set(1 if self.is_connected() else 0)

    async def connect_initial(self) -> None:
        """Connect with up to `max_retries` attempts; StartupError when all fail."""
        attempts = max(1, self.config.max_retries)
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            if self._closed or not self.state.is_running:
                raise StartupError("shutdown requested before the ledger connection came up")
            if self.is_connected():
                return
            self._log_event("connect_attempt", attempt=attempt, max_attempts=attempts)
            try:
                await self._client.connect()
            except Exception as exc:
                last_error = exc
                self._log_event("connect_failed", level=logging.ERROR, attempt=attempt, error=str(exc))
                if attempt < attempts:
                    delay = backoff_delay(attempt, self.config.backoff_step_sec, self.config.backoff_max_sec)
                    self._log_event("connect_retry_scheduled", delay_sec=delay)
                    await asyncio.sleep(delay)
                continue

            self.state.consecutive_errors = 0
            self._set_connected_gauge()
            self._log_event("connected", attempt=attempt)
            return

        self._set_connected_gauge()
        raise StartupError(f"failed to connect to the ledger after {attempts} attempts") from last_error

    async def ensure_connected(self) -> None:
        """No-op while connected; otherwise reconnect or raise LedgerConnectionError."""
        if self.is_connected():
            return
        self._log_event("connection_lost", level=logging.WARNING)
        await self._reconnect(force=False)

    async def force_reconnect(self) -> bool:
        """Drop and re-open the connection. Never raises; returns success."""
        try:
            await self._reconnect(force=True)
        except LedgerConnectionError as exc:
            self._log_event("reconnect_failed", level=logging.ERROR, error=str(exc))
            return False
        return True

    async def _reconnect(self, force: bool) -> None:
        async with self._reconnect_lock:
            # Another task may have restored the connection while we waited.
            if not force and self.is_connected():
                return
            if self._closed:
                raise LedgerConnectionError("connection closed for shutdown")

            self.state.reconnects += 1
            await self._safe_disconnect()
            await asyncio.sleep(self.config.reconnect_delay_sec)
            try:
                await self._client.connect()
            except Exception as exc:
                if self.metrics:
                    self.metrics.reconnects.labels(outcome="failed").inc()
                self._set_connected_gauge()
                raise LedgerConnectionError(f"reconnect failed: {exc}") from exc

            self.state.consecutive_errors = 0
            if self.metrics:
                self.metrics.reconnects.labels(outcome="ok").inc()
            self._set_connected_gauge()
            self._log_event("connection_restored", forced=force)

    async def _safe_disconnect(self) -> None:
        try:
            await self._client.disconnect()
        except Exception as exc:
            self._log_event("disconnect_error", level=logging.WARNING, error=str(exc))

    async def close(self) -> None:
        """Shutdown-time disconnect. Further reconnects are refused."""
        self._closed = True
        async with self._reconnect_lock:
            if self.is_connected():
                await self._safe_disconnect()
                self._log_event("disconnected")
        self._set_connected_gauge()
