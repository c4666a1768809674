"""
Tests for ValuationAggregator: combination maths, source failures, fallbacks.
"""
import math

import pytest

from offerbot.errors import DegradedAggregationError, SourceFetchError
from offerbot.oracle.aggregator import AggregatorConfig, SyntheticEstimate, ValuationAggregator, combine_quotes
from offerbot.oracle.models import SourceQuote
from tests.conftest import FakePriceSource


class TestCombineQuotes:
    def test_identical_values_have_zero_cov(self):
        quotes = [SourceQuote(f"s{i}", 1_000_000.0, 0.9) for i in range(3)]
        v = combine_quotes(quotes, min_confidence=0.7)
        assert v.value == 1_000_000.0
        assert v.variance == 0.0
        assert v.coefficient_of_variation == 0.0
        assert v.is_reliable
        assert v.source_count == 3

    def test_default_weights_are_uniform(self):
        quotes = [SourceQuote("a", 900.0, 0.8), SourceQuote("b", 1100.0, 0.8)]
        v = combine_quotes(quotes, min_confidence=0.7)
        assert v.value == 1000.0
        # population variance over raw values
        assert v.variance == pytest.approx(10_000.0)
        assert v.coefficient_of_variation == pytest.approx(0.1)

    def test_explicit_weights(self):
        quotes = [SourceQuote("a", 1_000_000.0, 0.9, weight=0.3), SourceQuote("b", 1_100_000.0, 0.9, weight=0.7)]
        v = combine_quotes(quotes, min_confidence=0.7)
        assert v.value == 1_070_000.0

    def test_value_rounding_to_zero_is_unreliable(self):
        quotes = [SourceQuote("a", 0.3, 0.9), SourceQuote("b", 0.3, 0.9)]
        v = combine_quotes(quotes, min_confidence=0.7)
        assert v.value == 0.0
        assert v.coefficient_of_variation == 0.0
        assert not v.is_reliable

    def test_confidence_below_threshold_is_unreliable(self):
        quotes = [SourceQuote("a", 1000.0, 0.6), SourceQuote("b", 1000.0, 0.65)]
        v = combine_quotes(quotes, min_confidence=0.7)
        assert v.confidence == pytest.approx(0.625)
        assert not v.is_reliable

    def test_high_dispersion_is_unreliable(self):
        quotes = [SourceQuote("a", 500.0, 0.95), SourceQuote("b", 1500.0, 0.95)]
        v = combine_quotes(quotes, min_confidence=0.7)
        assert v.coefficient_of_variation == pytest.approx(0.5)
        assert not v.is_reliable

    def test_value_rounded_half_up(self):
        quotes = [SourceQuote("a", 1000.0, 0.9), SourceQuote("b", 1001.0, 0.9)]
        assert combine_quotes(quotes, 0.7).value == 1001.0

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            combine_quotes([], 0.7)


class TestAggregate:
    @pytest.mark.asyncio
    async def test_all_sources_contribute(self):
        agg = ValuationAggregator(AggregatorConfig(min_confidence=0.7))
        sources = [FakePriceSource("a", 1_000_000), FakePriceSource("b", 1_000_000)]
        v = await agg.aggregate(sources)
        assert v.source_count == 2
        assert v.is_reliable
        assert not v.is_from_cache
        assert agg.cached is v
        assert all(s.calls == 1 for s in sources)

    @pytest.mark.asyncio
    async def test_failed_source_is_dropped(self, caplog):
        agg = ValuationAggregator()
        sources = [
            FakePriceSource("ok", 1_000_000),
            FakePriceSource("broken", None, error=SourceFetchError("broken", "HTTP 500")),
            FakePriceSource("crashy", None, error=RuntimeError("boom")),
        ]
        with caplog.at_level("WARNING", logger="offerbot"):
            v = await agg.aggregate(sources)
        assert v.source_count == 1
        assert [q.source for q in v.sources] == ["ok"]
        assert "HTTP 500" in caplog.text
        assert "RuntimeError: boom" in caplog.text

    @pytest.mark.asyncio
    async def test_slow_source_times_out(self):
        agg = ValuationAggregator(AggregatorConfig(source_timeout_sec=0.01))
        sources = [FakePriceSource("fast", 2_000_000), FakePriceSource("slow", 1, delay=1.0)]
        v = await agg.aggregate(sources)
        assert v.source_count == 1
        assert v.value == 2_000_000.0

    @pytest.mark.asyncio
    async def test_no_data_and_non_positive_dropped(self):
        agg = ValuationAggregator()
        sources = [
            FakePriceSource("none", None),
            FakePriceSource("zero", 0),
            FakePriceSource("nan", math.nan),
            FakePriceSource("good", 750_000),
        ]
        v = await agg.aggregate(sources)
        assert v.source_count == 1
        assert v.value == 750_000.0

    @pytest.mark.asyncio
    async def test_falls_back_to_cache(self):
        agg = ValuationAggregator()
        source = FakePriceSource("a", 1_000_000)
        first = await agg.aggregate([source])

        source.error = SourceFetchError("a", "down")
        second = await agg.aggregate([source])
        assert second.is_from_cache
        assert second.value == first.value
        assert second.cache_age_sec is not None and second.cache_age_sec >= 0
        # the cache itself is not replaced by the tagged copy
        assert agg.cached is first

    @pytest.mark.asyncio
    async def test_cache_preferred_over_synthetic(self):
        agg = ValuationAggregator(AggregatorConfig(synthetic=SyntheticEstimate(5.0)))
        source = FakePriceSource("a", 1_000_000)
        await agg.aggregate([source])
        source.value = None
        v = await agg.aggregate([source])
        assert v.is_from_cache
        assert not v.degraded

    @pytest.mark.asyncio
    async def test_synthetic_when_nothing_cached(self):
        agg = ValuationAggregator(AggregatorConfig(synthetic=SyntheticEstimate(900_000.0, confidence=0.5)))
        v = await agg.aggregate([FakePriceSource("a", None, error=SourceFetchError("a", "down"))])
        assert v.degraded
        assert not v.is_reliable
        assert v.value == 900_000.0
        assert v.source_count == 0
        assert agg.cached is None

    @pytest.mark.asyncio
    async def test_no_fallback_raises(self):
        agg = ValuationAggregator()
        with pytest.raises(DegradedAggregationError):
            await agg.aggregate([FakePriceSource("a", None)])

    @pytest.mark.asyncio
    async def test_no_sources_raises(self):
        with pytest.raises(DegradedAggregationError):
            await ValuationAggregator().aggregate([])
