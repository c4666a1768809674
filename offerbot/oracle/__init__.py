"""
Valuation oracle: sources, aggregation, scheduling and on-ledger persistence.
"""

from offerbot.oracle.aggregator import AggregatorConfig, SyntheticEstimate, ValuationAggregator, combine_quotes
from offerbot.oracle.channel import PriceUpdateChannel
from offerbot.oracle.models import PriceUpdateEvent, SourceQuote, Valuation, is_reliable, relative_change
from offerbot.oracle.publisher import ValuationPublisher
from offerbot.oracle.scheduler import OracleScheduler, SchedulerConfig, SchedulerState
from offerbot.oracle.sources import HttpJsonPriceSource, PriceSource, StaticPriceSource

__all__ = [
    "AggregatorConfig",
    "SyntheticEstimate",
    "ValuationAggregator",
    "combine_quotes",
    "PriceUpdateChannel",
    "PriceUpdateEvent",
    "SourceQuote",
    "Valuation",
    "is_reliable",
    "relative_change",
    "ValuationPublisher",
    "OracleScheduler",
    "SchedulerConfig",
    "SchedulerState",
    "HttpJsonPriceSource",
    "PriceSource",
    "StaticPriceSource",
]
