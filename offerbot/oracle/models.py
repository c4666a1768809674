"""
Valuation value types.

A Valuation is an immutable snapshot produced by one aggregation cycle. It is
superseded, never mutated: the cache path hands out a tagged copy.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

# Cross-source agreement ceiling for a reliable valuation.
MAX_RELIABLE_COV = 0.15
# Relative move (fraction) a reliable valuation must exceed to re-price.
PRICE_CHANGE_THRESHOLD = 0.01


def is_reliable(confidence: float, coefficient_of_variation: float, min_confidence: float) -> bool:
    return confidence >= min_confidence and coefficient_of_variation < MAX_RELIABLE_COV


@dataclass(frozen=True)
class SourceQuote:
    """One source's estimate. `weight=None` means 1/N at aggregation time."""
    source: str
    value: float
    confidence: float
    weight: Optional[float] = None


@dataclass(frozen=True)
class Valuation:
    value: float
    confidence: float
    variance: float
    coefficient_of_variation: float
    source_count: int
    is_reliable: bool
    timestamp: float = field(default_factory=time.time)
    sources: Tuple[SourceQuote, ...] = ()
    # Synthetic estimate used because no source answered and nothing was cached.
    degraded: bool = False
    is_from_cache: bool = False
    cache_age_sec: Optional[float] = None

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "confidence": round(self.confidence, 4),
            "variance": self.variance,
            "coefficient_of_variation": round(self.coefficient_of_variation, 6),
            "source_count": self.source_count,
            "is_reliable": self.is_reliable,
            "timestamp": self.timestamp,
            "degraded": self.degraded,
            "is_from_cache": self.is_from_cache,
            "cache_age_sec": self.cache_age_sec,
            "sources": [q.source for q in self.sources],
        }


def relative_change(old: Valuation, new: Valuation) -> float:
    """(new - old) / old."""
    if old.value == 0:
        return 0.0
    return (new.value - old.value) / old.value


@dataclass(frozen=True)
class PriceUpdateEvent:
    """Emitted once per accepted, significant, reliable valuation."""
    old_valuation: Optional[Valuation]
    new_valuation: Valuation
    price_change: float
    timestamp: float = field(default_factory=time.time)

    @property
    def price_change_percent(self) -> float:
        return self.price_change * 100.0
