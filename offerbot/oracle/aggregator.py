"""
ValuationAggregator: many unreliable estimates in, one Valuation out.

Flow per aggregate():
1. Fetch every source concurrently, each under its own timeout
2. Drop sources that raised, timed out, returned None or a non-positive value
3. Combine the survivors: weighted mean, population variance, CoV, mean confidence
4. Zero survivors -> cached valuation, else synthetic estimate, else DegradedAggregationError

Only genuine aggregations refresh the cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, Sequence, TYPE_CHECKING

from offerbot.errors import DegradedAggregationError, SourceFetchError
from offerbot.oracle.models import SourceQuote, Valuation, is_reliable

if TYPE_CHECKING:
    from offerbot.monitoring.metrics import OfferBotMetrics
    from offerbot.oracle.sources import PriceSource

log = logging.getLogger("offerbot")


@dataclass(frozen=True)
class SyntheticEstimate:
    """Operator-supplied fallback value. Valuations built from it are never reliable."""
    value: float
    confidence: float = 0.5


@dataclass
class AggregatorConfig:
    min_confidence: float = 0.70
    source_timeout_sec: float = 10.0
    synthetic: Optional[SyntheticEstimate] = None

    log_event_callback: Optional[Callable[..., None]] = None


def combine_quotes(quotes: Sequence[SourceQuote], min_confidence: float) -> Valuation:
    """Weighted mean with 1/N default weights; variance and CoV over raw values."""
    if not quotes:
        raise ValueError("combine_quotes needs at least one quote")

    n = len(quotes)
    total_weighted = 0.0
    total_weight = 0.0
    total_confidence = 0.0
    for q in quotes:
        w = q.weight if q.weight else 1.0 / n
        total_weighted += q.value * w
        total_weight += w
        total_confidence += q.confidence

    weighted_value = total_weighted / total_weight
    confidence = total_confidence / n

    raw_mean = sum(q.value for q in quotes) / n
    variance = sum((q.value - raw_mean) ** 2 for q in quotes) / n
    cov = math.sqrt(variance) / weighted_value if weighted_value > 0 else float("inf")
    value = float(math.floor(weighted_value + 0.5))

    return Valuation(
        value=value,
        confidence=confidence,
        variance=variance,
        coefficient_of_variation=cov,
        source_count=n,
        # A value that rounds to zero cannot price anything
        is_reliable=value > 0 and is_reliable(confidence, cov, min_confidence),
        sources=tuple(quotes),
    )


class ValuationAggregator:
    """
    Usage:
        agg = ValuationAggregator(AggregatorConfig(min_confidence=0.7))
        valuation = await agg.aggregate(sources)
        if valuation.is_reliable:
            ...
    """

    def __init__(self, config: Optional[AggregatorConfig] = None, metrics: Optional["OfferBotMetrics"] = None) -> None:
        self.config = config or AggregatorConfig()
        self.metrics = metrics
        self._cached: Optional[Valuation] = None

        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, json.dumps({"event": event, **kwargs}))

    @property
    def min_confidence(self) -> float:
        return self.config.min_confidence

    @property
    def cached(self) -> Optional[Valuation]:
        """Last genuine valuation, if any."""
        return self._cached

    async def aggregate(self, sources: Sequence["PriceSource"]) -> Valuation:
        results = await asyncio.gather(
            *(self._fetch_one(src) for src in sources),
            return_exceptions=True,
        )

        quotes: List[SourceQuote] = []
        for src, result in zip(sources, results):
            name = getattr(src, "name", type(src).__name__)
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    # CancelledError and friends are not a source failure.
                    raise result
                self._record_failure(name, result)
                continue
            if result is None:
                self._log_event("source_no_data", level=logging.DEBUG, source=name)
                continue
            if not (result.value > 0 and math.isfinite(result.value)):
                self._record_failure(name, SourceFetchError(name, f"non-positive value {result.value}"))
                continue
            quotes.append(result)

        if quotes:
            valuation = combine_quotes(quotes, self.config.min_confidence)
            self._cached = valuation
            if self.metrics:
                self.metrics.valuation_confidence.set(valuation.confidence)
                self.metrics.valuation_cov.set(valuation.coefficient_of_variation)
            self._log_event(
                "valuation_aggregated",
                value=valuation.value,
                confidence=round(valuation.confidence, 4),
                cov=round(valuation.coefficient_of_variation, 6),
                sources=valuation.source_count,
                requested=len(sources),
                reliable=valuation.is_reliable,
            )
            return valuation

        return self._fallback(len(sources))

    async def _fetch_one(self, source: "PriceSource") -> Optional[SourceQuote]:
        name = getattr(source, "name", type(source).__name__)
        try:
            return await asyncio.wait_for(source.fetch(), timeout=self.config.source_timeout_sec)
        except asyncio.TimeoutError as exc:
            raise SourceFetchError(name, f"timed out after {self.config.source_timeout_sec}s") from exc

    def _record_failure(self, name: str, exc: Exception) -> None:
        reason = exc.reason if isinstance(exc, SourceFetchError) else f"{type(exc).__name__}: {exc}"
        self._log_event("source_fetch_failed", level=logging.WARNING, source=name, reason=reason)
        if self.metrics:
            self.metrics.source_failures.labels(source=name).inc()

    def _fallback(self, requested: int) -> Valuation:
        if self._cached is not None:
            age = time.time() - self._cached.timestamp
            self._log_event("valuation_from_cache", level=logging.WARNING, requested=requested, cache_age_sec=round(age, 1))
            if self.metrics:
                self.metrics.degraded_aggregations.labels(mode="cache").inc()
            return replace(self._cached, is_from_cache=True, cache_age_sec=age)

        synthetic = self.config.synthetic
        if synthetic is not None:
            self._log_event("valuation_synthetic", level=logging.WARNING, requested=requested, value=synthetic.value)
            if self.metrics:
                self.metrics.degraded_aggregations.labels(mode="synthetic").inc()
            return Valuation(
                value=float(synthetic.value),
                confidence=synthetic.confidence,
                variance=0.0,
                coefficient_of_variation=0.0,
                source_count=0,
                is_reliable=False,
                degraded=True,
            )

        raise DegradedAggregationError(f"none of {requested} valuation sources answered and no fallback is available")
