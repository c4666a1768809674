"""
ReconciliationLoop: the cooperative driver of one bot run.

Lifecycle:
    startup   initial connect (StartupError is fatal), account check, start
              the oracle scheduler and the status reporter when configured
    run       reconcile() then an interruptible sleep, while state.is_running
    shutdown  stop scheduler and reporter, final status snapshot, disconnect,
              return the final statistics

request_stop() only flips the flag and wakes the sleep; an in-flight cycle
always finishes.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

from offerbot.errors import StartupError
from offerbot.ledger.models import format_decimal

if TYPE_CHECKING:
    from offerbot.connection.resilient_connection import ResilientConnection
    from offerbot.execution.offer_reconciler import CycleResult, OfferReconciler
    from offerbot.execution.state import ReconciliationState
    from offerbot.monitoring.alerting import AlertManager
    from offerbot.monitoring.compliance import StatusReporter
    from offerbot.monitoring.metrics import OfferBotMetrics
    from offerbot.oracle.scheduler import OracleScheduler

log = logging.getLogger("offerbot")


@dataclass
class LoopConfig:
    check_interval_sec: float = 60.0


class ReconciliationLoop:
    """
    Usage:
        loop = ReconciliationLoop(connection, reconciler, state, scheduler=scheduler)
        stats = await loop.run()          # returns after request_stop()
    """

    def __init__(
        self,
        connection: "ResilientConnection",
        reconciler: "OfferReconciler",
        state: "ReconciliationState",
        config: Optional[LoopConfig] = None,
        scheduler: Optional["OracleScheduler"] = None,
        reporter: Optional["StatusReporter"] = None,
        alerts: Optional["AlertManager"] = None,
        metrics: Optional["OfferBotMetrics"] = None,
    ) -> None:
        self.connection = connection
        self.reconciler = reconciler
        self.state = state
        self.config = config or LoopConfig()
        self.scheduler = scheduler
        self.reporter = reporter
        self.alerts = alerts
        self.metrics = metrics

        self._wake = asyncio.Event()
        self._stop_reason = "normal"
        self._final_stats: Optional[Dict[str, Any]] = None
        self.last_result: Optional["CycleResult"] = None

    def request_stop(self, reason: str = "normal") -> None:
        if self.state.is_running:
            log.info(json.dumps({"event": "stop_requested", "reason": reason}))
        self._stop_reason = reason
        self.state.is_running = False
        self._wake.set()

    async def startup(self) -> None:
        """Initial connect and account check. Raises StartupError."""
        try:
            await self.connection.connect_initial()
        except StartupError:
            await self.connection.close()
            raise

        await self._check_account()
        if self.metrics:
            self.metrics.bot_started.inc()

        desired = self.reconciler.desired
        log.info(json.dumps({
            "event": "bot_started",
            "account": self.connection.account,
            "sell": f"{format_decimal(desired.sell_amount)} {desired.sell}",
            "buy": f"{format_decimal(desired.buy_amount)} {desired.buy}",
            "check_interval_sec": self.config.check_interval_sec,
            "price_tracking": self.scheduler is not None,
        }))
        if self.alerts:
            await self.alerts.alert_startup(
                self.connection.account,
                self.reconciler.pair,
                check_interval_sec=self.config.check_interval_sec,
                price_tracking=self.scheduler is not None,
            )

    async def _check_account(self) -> None:
        account = self.connection.account
        try:
            info = await self.connection.client.get_account_info(account)
        except Exception as exc:
            log.warning(json.dumps({"event": "account_check_failed", "account": account, "error": str(exc)}))
            return
        if info is None:
            log.warning(json.dumps({"event": "account_unfunded", "account": account}))
            return
        log.info(json.dumps({
            "event": "account_ready",
            "account": account,
            "balance_xrp": format_decimal(info.balance_xrp),
            "sequence": info.sequence,
        }))

    async def run(self) -> Dict[str, Any]:
        """Run until request_stop(). Returns the final statistics."""
        await self.startup()
        try:
            if self.scheduler is not None:
                await self.scheduler.start()
            if self.reporter is not None:
                await self.reporter.start()

            while self.state.is_running:
                self.last_result = await self.reconciler.reconcile()
                if not self.state.is_running:
                    break
                await self._sleep(self.config.check_interval_sec)
        finally:
            stats = await self.shutdown()
        return stats

    async def run_once(self) -> Dict[str, Any]:
        """Connect, reconcile once, shut down."""
        await self.startup()
        try:
            self.last_result = await self.reconciler.reconcile()
        finally:
            self.request_stop("once")
            stats = await self.shutdown()
        return stats

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def shutdown(self) -> Dict[str, Any]:
        """Idempotent. Stops background tasks, emits the final snapshot, disconnects."""
        if self._final_stats is not None:
            return self._final_stats
        self.state.is_running = False
        self._wake.set()

        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.reporter is not None:
            await self.reporter.stop()
            await self.reporter.report(kind="final")

        stats = self.state.snapshot()
        if self.last_result is not None:
            stats["last_cycle"] = self.last_result.outcome.value
        log.info(json.dumps({"event": "bot_stopped", "reason": self._stop_reason, **stats}))

        if self.alerts:
            await self.alerts.alert_shutdown(
                self._stop_reason,
                offers_created=stats["offers_created"],
                total_errors=stats["total_errors"],
                uptime=stats["uptime"],
            )
            await self.alerts.flush()

        await self.connection.close()
        self._final_stats = stats
        return stats
