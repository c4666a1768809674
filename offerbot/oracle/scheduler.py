"""
OracleScheduler: periodic valuation with a significance gate.

State machine: STOPPED -> RUNNING -> STOPPED

Per update:
1. Aggregate all sources
2. Unreliable, cached or degraded result -> log only, baseline unchanged
3. No baseline yet -> accept as the initial baseline (no event)
4. |change| > 1% -> new baseline, PriceUpdateEvent to every subscriber,
   best-effort on-ledger publish
5. Otherwise -> keep baseline, log the move

The baseline is stale when the last reliable confirmation is older than
twice the update interval. While stale (or before the first baseline) the
loop retries after stale_retry_sec instead of a full interval.

Usage:
    scheduler = OracleScheduler(aggregator, sources, SchedulerConfig(update_interval_ms=60_000))
    channel = scheduler.subscribe()
    await scheduler.start()
    ...
    for event in channel.drain():
        ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, TYPE_CHECKING

from offerbot.oracle.channel import DEFAULT_CAPACITY, PriceUpdateChannel
from offerbot.oracle.models import PRICE_CHANGE_THRESHOLD, PriceUpdateEvent, Valuation, relative_change

if TYPE_CHECKING:
    from offerbot.monitoring.metrics import OfferBotMetrics
    from offerbot.oracle.aggregator import ValuationAggregator
    from offerbot.oracle.publisher import ValuationPublisher
    from offerbot.oracle.sources import PriceSource

log = logging.getLogger("offerbot")


class SchedulerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class SchedulerConfig:
    update_interval_ms: int = 3_600_000
    change_threshold: float = PRICE_CHANGE_THRESHOLD
    # Baseline goes stale after this many intervals without a reliable confirmation
    stale_after_intervals: float = 2.0
    # Wait before the next attempt while the baseline is missing or stale
    stale_retry_sec: float = 30.0

    log_event_callback: Optional[Callable[..., None]] = None


class OracleScheduler:
    def __init__(
        self,
        aggregator: "ValuationAggregator",
        sources: Sequence["PriceSource"],
        config: Optional[SchedulerConfig] = None,
        publisher: Optional["ValuationPublisher"] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
        metrics: Optional["OfferBotMetrics"] = None,
    ) -> None:
        self.aggregator = aggregator
        self.sources = list(sources)
        self.config = config or SchedulerConfig()
        self.publisher = publisher
        self.metrics = metrics
        self._on_error = on_error

        self._state = SchedulerState.STOPPED
        self._baseline: Optional[Valuation] = None
        self._latest: Optional[Valuation] = None
        self._confirmed_at: Optional[float] = None
        self._last_update_at: Optional[float] = None
        self._next_update_at: Optional[float] = None
        self._channels: List[PriceUpdateChannel] = []
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._update_lock = asyncio.Lock()
        self._publish_tasks: Set[asyncio.Task] = set()
        self._updates = 0
        self._events = 0
        self._errors = 0

        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, json.dumps({"event": event, **kwargs}))

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def baseline(self) -> Optional[Valuation]:
        """Last accepted valuation."""
        return self._baseline

    @property
    def interval_sec(self) -> float:
        return self.config.update_interval_ms / 1000.0

    def set_error_callback(self, callback: Optional[Callable[[Exception], Any]]) -> None:
        self._on_error = callback

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #

    def subscribe(self, capacity: int = DEFAULT_CAPACITY, name: str = "reconciler") -> PriceUpdateChannel:
        channel = PriceUpdateChannel(capacity=capacity, name=name)
        self._channels.append(channel)
        return channel

    def unsubscribe(self, channel: PriceUpdateChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        if self._state is SchedulerState.RUNNING:
            self._log_event("oracle_already_running", level=logging.WARNING)
            return
        self._state = SchedulerState.RUNNING
        self._wake.clear()
        self._log_event(
            "oracle_started",
            interval_sec=self.interval_sec,
            sources=[getattr(s, "name", type(s).__name__) for s in self.sources],
        )
        if self._baseline is None or self.is_stale():
            await self.perform_update()
        self._task = asyncio.create_task(self._run_loop(), name="oracle-scheduler")

    async def stop(self) -> None:
        if self._state is SchedulerState.STOPPED:
            return
        self._state = SchedulerState.STOPPED
        self._next_update_at = None
        self._wake.set()

        tasks = [t for t in [self._task, *self._publish_tasks] if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._log_event("oracle_stopped", updates=self._updates, events=self._events, errors=self._errors)

    def request_update(self) -> None:
        """Wake the loop for an immediate out-of-cycle update."""
        self._wake.set()

    def _next_wait(self) -> float:
        if not self.is_stale():
            return self.interval_sec
        wait = min(self.config.stale_retry_sec, self.interval_sec)
        self._log_event("oracle_stale_retry", level=logging.WARNING, retry_in_sec=wait,
                        has_baseline=self._baseline is not None)
        return wait

    async def _run_loop(self) -> None:
        while self._state is SchedulerState.RUNNING:
            wait = self._next_wait()
            self._next_update_at = time.time() + wait
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass
            if self._state is not SchedulerState.RUNNING:
                break
            self._wake.clear()
            await self.perform_update()

    # ------------------------------------------------------------------ #
    # Update cycle
    # ------------------------------------------------------------------ #

    def is_stale(self, now: Optional[float] = None) -> bool:
        if self._baseline is None or self._confirmed_at is None:
            return True
        now = now if now is not None else time.time()
        return (now - self._confirmed_at) > self.interval_sec * self.config.stale_after_intervals

    async def current_valuation(self) -> Optional[Valuation]:
        """The accepted baseline, refreshed first when stale."""
        if self._baseline is not None and not self.is_stale():
            return self._baseline
        self._log_event("oracle_forced_refresh", reason="stale" if self._baseline else "no_baseline")
        await self.perform_update()
        return self._baseline

    async def perform_update(self) -> Optional[PriceUpdateEvent]:
        """One aggregation + decision. Returns the event if one was published."""
        async with self._update_lock:
            return await self._perform_update()

    async def _perform_update(self) -> Optional[PriceUpdateEvent]:
        started = time.monotonic()
        self._updates += 1
        self._last_update_at = time.time()

        try:
            valuation = await self.aggregator.aggregate(self.sources)
        except Exception as exc:
            self._errors += 1
            self._log_event("oracle_update_failed", level=logging.ERROR, error=f"{type(exc).__name__}: {exc}")
            await self._report_error(exc)
            return None

        self._latest = valuation

        if not valuation.is_reliable:
            self._log_event(
                "valuation_unreliable",
                level=logging.WARNING,
                source="aggregate",
                value=valuation.value,
                confidence=round(valuation.confidence, 4),
                min_confidence=self.aggregator.min_confidence,
                cov=round(valuation.coefficient_of_variation, 6),
                degraded=valuation.degraded,
            )
            return None

        if valuation.is_from_cache:
            # A cached copy does not confirm anything new.
            self._log_event("valuation_cached_ignored", level=logging.WARNING, cache_age_sec=valuation.cache_age_sec)
            return None

        self._confirmed_at = time.time()

        if self._baseline is None:
            self._baseline = valuation
            if self.metrics:
                self.metrics.valuation_value.set(valuation.value)
            self._log_event(
                "valuation_baseline_set",
                value=valuation.value,
                confidence=round(valuation.confidence, 4),
                sources=valuation.source_count,
            )
            return None

        change = relative_change(self._baseline, valuation)
        duration_ms = round((time.monotonic() - started) * 1000.0, 1)

        if abs(change) <= self.config.change_threshold:
            self._log_event(
                "valuation_stable",
                value=valuation.value,
                baseline=self._baseline.value,
                change_pct=round(change * 100.0, 4),
                duration_ms=duration_ms,
            )
            return None

        event = PriceUpdateEvent(old_valuation=self._baseline, new_valuation=valuation, price_change=change)
        self._baseline = valuation
        self._events += 1
        for channel in self._channels:
            channel.publish(event)
        if self.metrics:
            self.metrics.price_updates.inc()
            self.metrics.valuation_value.set(valuation.value)
        self._log_event(
            "price_update",
            old_value=event.old_valuation.value if event.old_valuation else None,
            new_value=valuation.value,
            change_pct=round(event.price_change_percent, 4),
            confidence=round(valuation.confidence, 4),
            subscribers=len(self._channels),
            duration_ms=duration_ms,
        )
        self._spawn_publish(valuation)
        return event

    async def _report_error(self, exc: Exception) -> None:
        if self._on_error is None:
            return
        try:
            result = self._on_error(exc)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            log.exception("oracle on_error callback raised")

    # ------------------------------------------------------------------ #
    # On-ledger persistence
    # ------------------------------------------------------------------ #

    def _spawn_publish(self, valuation: Valuation) -> None:
        if self.publisher is None:
            return
        task = asyncio.create_task(self._publish(valuation), name="valuation-publish")
        self._publish_tasks.add(task)
        task.add_done_callback(self._publish_tasks.discard)

    async def _publish(self, valuation: Valuation) -> None:
        try:
            await self.publisher.publish(valuation)
        except Exception as exc:
            self._log_event("valuation_publish_failed", level=logging.WARNING, error=f"{type(exc).__name__}: {exc}")

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #

    def health_status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "is_running": self.is_running,
            "update_interval_ms": self.config.update_interval_ms,
            "last_update_at": self._last_update_at,
            "last_confirmed_at": self._confirmed_at,
            "next_update_at": self._next_update_at,
            "is_stale": self.is_stale(),
            "has_cached_data": self.aggregator.cached is not None,
            "sources": [getattr(s, "name", type(s).__name__) for s in self.sources],
            "subscribers": [c.get_stats() for c in self._channels],
            "stats": {"updates": self._updates, "events": self._events, "errors": self._errors},
            "valuation": self._baseline.to_dict() if self._baseline else None,
            "latest": self._latest.to_dict() if self._latest else None,
        }
