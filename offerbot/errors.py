"""
Error taxonomy for the offer bot.

Only StartupError is fatal to the process. Everything else is caught at the
reconciler / scheduler boundary, counted, logged and retried on the next tick.
"""

from __future__ import annotations

from typing import Optional


class OfferBotError(Exception):
    """Base class for all bot errors."""


class StartupError(OfferBotError):
    """Configuration could not be loaded or the initial connect failed."""


class LedgerConnectionError(OfferBotError, ConnectionError):
    """Transient transport failure talking to the ledger."""


class LedgerRequestError(OfferBotError):
    """A ledger query returned an unsuccessful response."""

    def __init__(self, command: str, error: str) -> None:
        super().__init__(f"{command} failed: {error}")
        self.command = command
        self.error = error


class SubmissionError(OfferBotError):
    """A transaction reached the ledger but settled with a non-success code."""

    def __init__(self, result_code: str, tx_hash: Optional[str] = None, kind: str = "offer_create") -> None:
        super().__init__(f"{kind} settled with {result_code} (hash={tx_hash})")
        self.result_code = result_code
        self.tx_hash = tx_hash
        self.kind = kind


class SourceFetchError(OfferBotError):
    """A single valuation source failed. Never propagated past the aggregator."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class DegradedAggregationError(OfferBotError):
    """No source succeeded and neither a cached nor a synthetic valuation exists."""
