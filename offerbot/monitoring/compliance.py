"""
Status snapshots for the compliance / custody sink.

StatusReporter periodically assembles a snapshot (valuation health, ledger
account custody data, trading statistics) and hands it to a ComplianceSink.
One final snapshot is emitted at shutdown.

JsonFileComplianceSink writes one JSON report and one text summary per
snapshot and prunes report files older than the retention window. File IO
runs in the default executor under a lock so the event loop never blocks.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, TYPE_CHECKING

from offerbot.execution.state import format_uptime
from offerbot.ledger.models import format_decimal

if TYPE_CHECKING:
    from offerbot.connection.resilient_connection import ResilientConnection
    from offerbot.execution.offer_reconciler import OfferReconciler
    from offerbot.execution.state import ReconciliationState
    from offerbot.oracle.scheduler import OracleScheduler

log = logging.getLogger("offerbot")

REPORT_PREFIX = "compliance_"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="seconds")


class ComplianceSink(Protocol):
    async def send(self, snapshot: Dict[str, Any]) -> Any: ...


class JsonFileComplianceSink:
    def __init__(self, directory: str, retention_days: int = 365) -> None:
        self.directory = Path(directory)
        self.retention_days = retention_days
        self._lock = asyncio.Lock()

    async def send(self, snapshot: Dict[str, Any]) -> Path:
        async with self._lock:
            loop = asyncio.get_running_loop()
            path = await loop.run_in_executor(None, lambda: self._write(snapshot))
            pruned = await loop.run_in_executor(None, self.prune)
        log.info(json.dumps({"event": "compliance_report_written", "path": str(path), "pruned": pruned}))
        return path

    def _write(self, snapshot: Dict[str, Any]) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.fromtimestamp(snapshot.get("generated_at_ts", time.time()), tz=timezone.utc)
        base = f"{REPORT_PREFIX}{snapshot.get('kind', 'periodic')}_{stamp:%Y%m%d_%H%M%S}"
        path = self.directory / f"{base}.json"
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(snapshot, indent=2, default=str))
        tmp.replace(path)
        (self.directory / f"{base}_summary.txt").write_text(render_summary(snapshot))
        return path

    def prune(self, now: Optional[float] = None) -> int:
        """Delete report files older than the retention window. Returns how many went."""
        if not self.directory.exists():
            return 0
        cutoff = (now if now is not None else time.time()) - self.retention_days * 86400
        removed = 0
        for path in self.directory.glob(f"{REPORT_PREFIX}*"):
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        return removed


def render_summary(snapshot: Dict[str, Any]) -> str:
    """Human-readable digest of one snapshot."""
    lines: List[str] = [
        f"Offer bot status report ({snapshot.get('kind', 'periodic')})",
        f"Report ID:    {snapshot.get('report_id')}",
        f"Generated:    {snapshot.get('generated_at')}",
        "",
    ]

    valuation = (snapshot.get("valuation") or {}).get("valuation")
    lines.append("Valuation")
    if valuation:
        lines.append(f"  Value:      {valuation['value']:,.0f}")
        lines.append(f"  Confidence: {valuation['confidence'] * 100:.1f}%")
        lines.append(f"  Sources:    {valuation['source_count']}")
        lines.append(f"  Reliable:   {valuation['is_reliable']}")
    else:
        lines.append("  n/a")
    lines.append("")

    custody = snapshot.get("custody") or {}
    lines.append("Custody")
    lines.append(f"  Account:    {custody.get('account')}")
    lines.append(f"  Connected:  {custody.get('connected')}")
    if custody.get("balance_xrp") is not None:
        lines.append(f"  Balance:    {custody['balance_xrp']} XRP")
    if custody.get("error"):
        lines.append(f"  Error:      {custody['error']}")
    lines.append("")

    trading = snapshot.get("trading") or {}
    offer = trading.get("desired_offer") or {}
    lines.append("Trading")
    if offer:
        lines.append(f"  Offer:      {offer.get('sell')} for {offer.get('buy')}")
    lines.append(f"  Created:    {trading.get('offers_created', 0)}")
    lines.append(f"  Cancelled:  {trading.get('offers_cancelled', 0)}")
    lines.append(f"  Repricings: {trading.get('price_updates', 0)}")
    lines.append(f"  Errors:     {trading.get('total_errors', 0)}")
    lines.append(f"  Uptime:     {trading.get('uptime', '0s')}")
    return "\n".join(lines) + "\n"


class StatusReporter:
    """
    Usage:
        reporter = StatusReporter(sink, state, connection, scheduler=scheduler,
                                  reconciler=reconciler, interval_sec=86400)
        await reporter.start()
        ...
        await reporter.stop()
        await reporter.report(kind="final")
    """

    def __init__(
        self,
        sink: ComplianceSink,
        state: "ReconciliationState",
        connection: "ResilientConnection",
        scheduler: Optional["OracleScheduler"] = None,
        reconciler: Optional["OfferReconciler"] = None,
        interval_sec: float = 86400.0,
    ) -> None:
        self.sink = sink
        self.state = state
        self.connection = connection
        self.scheduler = scheduler
        self.reconciler = reconciler
        self.interval_sec = interval_sec

        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._last_report_at: Optional[float] = None
        self.reports_sent = 0

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run_loop(), name="status-reporter")
        log.info(json.dumps({"event": "status_reporter_started", "interval_sec": self.interval_sec}))

    async def stop(self) -> None:
        self._stop.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _run_loop(self) -> None:
        while not self._stop.is_set():
            await self.report()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_sec)
            except asyncio.TimeoutError:
                continue

    async def report(self, kind: str = "periodic") -> bool:
        """Build and send one snapshot. Sink failures are logged, never raised."""
        try:
            snapshot = await self.build_snapshot(kind)
            await self.sink.send(snapshot)
        except Exception as exc:
            log.error(json.dumps({"event": "compliance_report_failed", "kind": kind, "error": f"{type(exc).__name__}: {exc}"}))
            return False
        self.reports_sent += 1
        return True

    async def build_snapshot(self, kind: str = "periodic") -> Dict[str, Any]:
        now = time.time()
        period_start = self._last_report_at if self._last_report_at is not None else self.state.started_at
        self._last_report_at = now

        return {
            "report_id": uuid.uuid4().hex,
            "kind": kind,
            "generated_at": _iso(now),
            "generated_at_ts": now,
            "period": {"start": _iso(period_start), "end": _iso(now)},
            "valuation": self.scheduler.health_status() if self.scheduler else None,
            "custody": await self._custody(),
            "trading": self._trading(),
        }

    async def _custody(self) -> Dict[str, Any]:
        connected = self.connection.is_connected()
        custody: Dict[str, Any] = {
            "account": self.connection.account,
            "connected": connected,
            "reconnects": self.state.reconnects,
            "balance_xrp": None,
            "sequence": None,
            "funded": None,
        }
        if not connected:
            return custody
        try:
            info = await self.connection.client.get_account_info(self.connection.account)
        except Exception as exc:
            custody["error"] = f"{type(exc).__name__}: {exc}"
            return custody
        custody["funded"] = info is not None
        if info is not None:
            custody["balance_xrp"] = format_decimal(info.balance_xrp)
            custody["sequence"] = info.sequence
        return custody

    def _trading(self) -> Dict[str, Any]:
        trading = self.state.snapshot()
        trading["uptime"] = format_uptime(self.state.uptime())
        if self.reconciler is not None:
            desired = self.reconciler.desired
            trading["desired_offer"] = {
                "sell": f"{format_decimal(desired.sell_amount)} {desired.sell.currency}",
                "buy": f"{format_decimal(desired.buy_amount)} {desired.buy.currency}",
                "offer_buy_amount": format_decimal(self.reconciler.offer_buy_amount()),
                "price": format_decimal(desired.price),
            }
        return trading
