"""
OfferReconciler: keeps exactly one live target offer on the book.

One cycle:
1. ensure_connected()
2. Price events pending -> reprice the desired offer, cancel every open offer
   of the pair (each cancellation independent), create the new offer
3. An accepted baseline not yet applied -> price the desired offer from it;
   keep a matching offer, otherwise replace the pair's offers
4. Otherwise list offers; the first one matching the desired offer within
   tolerance is the live target -> nothing to do
5. No match -> OfferCreate

Failure policy:
    Any exception fails the cycle and increments consecutive_errors. Reaching
    max_retries forces one reconnect and resets the counter whatever the
    reconnect outcome. A successful cycle resets the counter.

Thread Safety:
    Cycles never overlap (cycle lock). Every prepare/sign/submit runs inside
    the account's SubmissionQueue slot.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from offerbot.errors import SubmissionError
from offerbot.ledger.models import MATCH_TOLERANCE, DesiredOffer, LedgerOffer, format_decimal

if TYPE_CHECKING:
    from offerbot.connection.resilient_connection import ResilientConnection
    from offerbot.execution.state import ReconciliationState
    from offerbot.infra.ledger_client import SubmitResult
    from offerbot.infra.submission_queue import SubmissionQueue
    from offerbot.monitoring.alerting import AlertManager
    from offerbot.monitoring.metrics import OfferBotMetrics
    from offerbot.oracle.channel import PriceUpdateChannel
    from offerbot.oracle.models import PriceUpdateEvent, Valuation

log = logging.getLogger("offerbot")


@dataclass
class ReconcilerConfig:
    """Configuration for OfferReconciler."""
    max_retries: int = 3
    tolerance: Decimal = MATCH_TOLERANCE
    # Token supply used to turn a valuation into a buy amount; defaults to sell_amount
    total_supply: Optional[Decimal] = None
    admin_fee_enabled: bool = False
    admin_fee_pct: Decimal = Decimal("2.5")
    debug: bool = False

    log_event_callback: Optional[Callable[..., None]] = None


class CycleOutcome(Enum):
    MATCHED = "matched"
    CREATED = "created"
    REPRICED = "repriced"
    FAILED = "failed"


@dataclass
class CycleResult:
    """Result of one reconcile() call."""
    outcome: CycleOutcome
    offers_seen: int = 0
    matched_sequence: Optional[int] = None
    tx_hash: Optional[str] = None
    cancelled: int = 0
    cancel_failures: int = 0
    price_change_pct: Optional[float] = None
    reconnect_attempted: bool = False
    duration_ms: float = 0.0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome is not CycleOutcome.FAILED


class OfferReconciler:
    """
    Usage:
        reconciler = OfferReconciler(connection, desired, state, submission_queue,
                                     price_channel=scheduler.subscribe())
        result = await reconciler.reconcile()
    """

    def __init__(
        self,
        connection: "ResilientConnection",
        desired: DesiredOffer,
        state: "ReconciliationState",
        submission_queue: "SubmissionQueue",
        config: Optional[ReconcilerConfig] = None,
        price_channel: Optional["PriceUpdateChannel"] = None,
        metrics: Optional["OfferBotMetrics"] = None,
        alerts: Optional["AlertManager"] = None,
        baseline_provider: Optional[Callable[[], Optional["Valuation"]]] = None,
    ) -> None:
        self.connection = connection
        self.desired = desired
        self.state = state
        self.submission_queue = submission_queue
        self.config = config or ReconcilerConfig()
        self.price_channel = price_channel
        self.metrics = metrics
        self.alerts = alerts
        # Usually `lambda: scheduler.baseline`
        self.baseline_provider = baseline_provider
        # Valuation the desired offer was last priced from
        self.priced_from: Optional["Valuation"] = None

        self._cycle_lock = asyncio.Lock()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, json.dumps({"event": event, **kwargs}))

    @property
    def pair(self) -> str:
        return f"{self.desired.sell.currency}/{self.desired.buy.currency}"

    @property
    def total_supply(self) -> Decimal:
        return self.config.total_supply if self.config.total_supply is not None else self.desired.sell_amount

    def offer_buy_amount(self) -> Decimal:
        """Buy amount actually placed on the book (after the admin fee, if enabled)."""
        if self.config.admin_fee_enabled:
            return self.desired.buy_amount_after_fee(self.config.admin_fee_pct)
        return self.desired.buy_amount

    # ------------------------------------------------------------------ #
    # Cycle
    # ------------------------------------------------------------------ #

    async def reconcile(self) -> CycleResult:
        async with self._cycle_lock:
            started = time.monotonic()
            try:
                result = await self._run_cycle()
            except Exception as exc:
                result = CycleResult(outcome=CycleOutcome.FAILED, error=f"{type(exc).__name__}: {exc}")
                result.reconnect_attempted = await self._handle_failure(exc)
            else:
                self.state.record_success()

            result.duration_ms = round((time.monotonic() - started) * 1000.0, 1)
            if self.metrics:
                self.metrics.cycles.labels(outcome=result.outcome.value).inc()
                self.metrics.cycle_latency_ms.observe(result.duration_ms)
                self.metrics.consecutive_errors.set(self.state.consecutive_errors)
            return result

    async def _run_cycle(self) -> CycleResult:
        await self.connection.ensure_connected()

        event = self._latest_price_event()
        if event is not None:
            return await self._reprice(event)

        baseline = self._unapplied_baseline()
        if baseline is not None:
            return await self._apply_baseline(baseline)

        client = self.connection.client
        offers = await client.list_offers(client.address)
        self._dump_offers(offers)

        for offer in offers:
            if self.desired.matches(offer, self.config.tolerance):
                if self.metrics:
                    self.metrics.target_offer_present.set(1)
                self._log_event(
                    "offer_present",
                    sequence=offer.sequence,
                    gets=format_decimal(offer.taker_gets.value),
                    pays=format_decimal(offer.taker_pays.value),
                    open_offers=len(offers),
                )
                return CycleResult(outcome=CycleOutcome.MATCHED, offers_seen=len(offers), matched_sequence=offer.sequence)

        if self.metrics:
            self.metrics.target_offer_present.set(0)
        self._log_event("offer_missing", level=logging.WARNING, open_offers=len(offers), pair=self.pair)
        tx_hash = await self.create_offer()
        return CycleResult(outcome=CycleOutcome.CREATED, offers_seen=len(offers), tx_hash=tx_hash)

    def _latest_price_event(self) -> Optional["PriceUpdateEvent"]:
        if self.price_channel is None:
            return None
        events = self.price_channel.drain()
        if not events:
            return None
        if len(events) > 1:
            self._log_event("price_events_coalesced", count=len(events))
        return events[-1]

    def _unapplied_baseline(self) -> Optional["Valuation"]:
        if self.priced_from is not None or self.baseline_provider is None:
            return None
        return self.baseline_provider()

    async def _apply_baseline(self, valuation: "Valuation") -> CycleResult:
        """Price the desired offer from the first accepted valuation."""
        old_buy = self.desired.buy_amount
        self.desired = self.desired.repriced(valuation.value, self.total_supply)
        self._log_event(
            "offer_priced_from_baseline",
            valuation=valuation.value,
            old_buy_amount=format_decimal(old_buy),
            new_buy_amount=format_decimal(self.desired.buy_amount),
            total_supply=format_decimal(self.total_supply),
        )

        client = self.connection.client
        offers = await client.list_offers(client.address)
        self._dump_offers(offers)
        for offer in offers:
            if self.desired.matches(offer, self.config.tolerance):
                self.priced_from = valuation
                if self.metrics:
                    self.metrics.target_offer_present.set(1)
                self._log_event("offer_present", sequence=offer.sequence, open_offers=len(offers))
                return CycleResult(outcome=CycleOutcome.MATCHED, offers_seen=len(offers), matched_sequence=offer.sequence)

        cancelled, failures = await self.cancel_pair_offers(offers)
        tx_hash = await self.create_offer()
        # Only marked applied once the offer exists, so a failed cycle retries the replacement.
        self.priced_from = valuation
        return CycleResult(
            outcome=CycleOutcome.REPRICED,
            offers_seen=len(offers),
            tx_hash=tx_hash,
            cancelled=cancelled,
            cancel_failures=failures,
        )

    async def _reprice(self, event: "PriceUpdateEvent") -> CycleResult:
        old_buy = self.desired.buy_amount
        self.priced_from = event.new_valuation
        self.desired = self.desired.repriced(event.new_valuation.value, self.total_supply)
        self.state.price_updates += 1
        self._log_event(
            "offer_repricing",
            valuation=event.new_valuation.value,
            change_pct=round(event.price_change_percent, 4),
            old_buy_amount=format_decimal(old_buy),
            new_buy_amount=format_decimal(self.desired.buy_amount),
            total_supply=format_decimal(self.total_supply),
        )

        client = self.connection.client
        offers = await client.list_offers(client.address)
        cancelled, failures = await self.cancel_pair_offers(offers)

        tx_hash = await self.create_offer()
        if self.alerts:
            await self.alerts.alert_price_update(
                old_value=event.old_valuation.value if event.old_valuation else None,
                new_value=event.new_valuation.value,
                change_pct=event.price_change_percent,
                pair=self.pair,
                tx_hash=tx_hash,
            )
        return CycleResult(
            outcome=CycleOutcome.REPRICED,
            offers_seen=len(offers),
            tx_hash=tx_hash,
            cancelled=cancelled,
            cancel_failures=failures,
            price_change_pct=event.price_change_percent,
        )

    async def _handle_failure(self, exc: Exception) -> bool:
        """Count the failure; force a reconnect at max_retries. Returns whether one was attempted."""
        errors = self.state.record_failure()
        self._log_event(
            "reconcile_failed",
            level=logging.ERROR,
            error=f"{type(exc).__name__}: {exc}",
            consecutive_errors=errors,
            max_retries=self.config.max_retries,
        )
        if errors < self.config.max_retries:
            return False

        self._log_event("forcing_reconnect", level=logging.WARNING, consecutive_errors=errors)
        ok = await self.connection.force_reconnect()
        # Reset whatever the outcome; there is no circuit breaker.
        self.state.consecutive_errors = 0
        if not ok and self.alerts:
            await self.alerts.alert_reconnect_failed(f"reconnect after {errors} failed cycles did not succeed")
        return True

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #

    async def create_offer(self) -> Optional[str]:
        client = self.connection.client
        buy_amount = self.offer_buy_amount()
        tx = {
            "TransactionType": "OfferCreate",
            "Account": client.address,
            "TakerGets": self.desired.sell.amount(self.desired.sell_amount).to_ledger(),
            "TakerPays": self.desired.buy.amount(buy_amount).to_ledger(),
        }
        if self.config.admin_fee_enabled:
            self._log_event(
                "admin_fee_applied",
                fee_pct=format_decimal(self.config.admin_fee_pct),
                fee_amount=format_decimal(self.desired.buy_amount - buy_amount),
                offer_buy_amount=format_decimal(buy_amount),
            )
        if self.config.debug:
            log.debug(json.dumps({"event": "offer_create_tx", "tx": tx}))

        result = await self._submit(tx, kind="offer_create")
        self.state.record_offer_created(result.tx_hash)
        if self.metrics:
            self.metrics.offers_created.inc()
        self._log_event(
            "offer_created",
            tx_hash=result.tx_hash,
            sell=f"{format_decimal(self.desired.sell_amount)} {self.desired.sell.currency}",
            buy=f"{format_decimal(buy_amount)} {self.desired.buy.currency}",
            total_created=self.state.total_offers_created,
        )
        return result.tx_hash

    async def cancel_offer(self, sequence: int) -> Optional[str]:
        client = self.connection.client
        tx = {
            "TransactionType": "OfferCancel",
            "Account": client.address,
            "OfferSequence": sequence,
        }
        result = await self._submit(tx, kind="offer_cancel")
        self.state.offers_cancelled += 1
        if self.metrics:
            self.metrics.offers_cancelled.inc()
        self._log_event("offer_cancelled", sequence=sequence, tx_hash=result.tx_hash)
        return result.tx_hash

    async def cancel_pair_offers(self, offers: List[LedgerOffer]) -> Tuple[int, int]:
        """Cancel every offer of the target pair. One failure does not stop the rest."""
        cancelled = 0
        failures = 0
        for offer in offers:
            if not self.desired.same_pair(offer):
                continue
            try:
                await self.cancel_offer(offer.sequence)
                cancelled += 1
            except Exception as exc:
                failures += 1
                self._log_event(
                    "offer_cancel_failed",
                    level=logging.WARNING,
                    sequence=offer.sequence,
                    error=f"{type(exc).__name__}: {exc}",
                )
        return cancelled, failures

    async def _submit(self, tx: Dict[str, Any], kind: str) -> "SubmitResult":
        client = self.connection.client
        async with self.submission_queue.slot(client.address) as waited:
            if self.metrics:
                self.metrics.submission_queue_wait_ms.observe(waited * 1000.0)
            prepared = await client.prepare(tx)
            blob = client.sign(prepared)
            result = await client.submit_and_wait(blob)

        if not result.succeeded:
            if self.metrics:
                self.metrics.submission_failures.labels(kind=kind).inc()
            self._log_event(
                "submission_failed",
                level=logging.ERROR,
                kind=kind,
                result_code=result.result_code,
                tx_hash=result.tx_hash,
            )
            if self.alerts:
                await self.alerts.alert_submission_failed(kind, result.result_code, result.tx_hash, pair=self.pair)
            raise SubmissionError(result.result_code, result.tx_hash, kind=kind)
        return result

    def _dump_offers(self, offers: List[LedgerOffer]) -> None:
        if not self.config.debug:
            return
        for offer in offers:
            log.debug(json.dumps({
                "event": "ledger_offer",
                "sequence": offer.sequence,
                "gets": f"{format_decimal(offer.taker_gets.value)} {offer.taker_gets.identity}",
                "pays": f"{format_decimal(offer.taker_pays.value)} {offer.taker_pays.identity}",
                "flags": offer.flags,
            }))
