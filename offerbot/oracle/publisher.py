"""
On-ledger persistence of accepted valuations.

The valuation summary is written as hex-encoded JSON into the account's
AccountSet `Domain` field. Best effort: the scheduler fires this off and only
logs the outcome.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

from offerbot.errors import SubmissionError

if TYPE_CHECKING:
    from offerbot.connection.resilient_connection import ResilientConnection
    from offerbot.infra.ledger_client import SubmitResult
    from offerbot.infra.submission_queue import SubmissionQueue
    from offerbot.monitoring.metrics import OfferBotMetrics
    from offerbot.oracle.models import Valuation

log = logging.getLogger("offerbot")

# Ledger limit for AccountSet.Domain
MAX_DOMAIN_BYTES = 256


def encode_domain(valuation: "Valuation") -> str:
    payload = {
        "value": valuation.value,
        "confidence": round(valuation.confidence, 4),
        "timestamp": int(valuation.timestamp),
        "sources": valuation.source_count,
        "reliable": valuation.is_reliable,
    }
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    if len(raw) > MAX_DOMAIN_BYTES:
        raise ValueError(f"valuation summary is {len(raw)} bytes, Domain holds {MAX_DOMAIN_BYTES}")
    return raw.hex()


def decode_domain(domain_hex: str) -> Dict[str, Any]:
    return json.loads(bytes.fromhex(domain_hex).decode("utf-8"))


class ValuationPublisher:
    def __init__(
        self,
        connection: "ResilientConnection",
        submission_queue: "SubmissionQueue",
        metrics: Optional["OfferBotMetrics"] = None,
    ) -> None:
        self.connection = connection
        self.submission_queue = submission_queue
        self.metrics = metrics

    def build_tx(self, account: str, valuation: "Valuation") -> Dict[str, Any]:
        return {
            "TransactionType": "AccountSet",
            "Account": account,
            "Domain": encode_domain(valuation),
        }

    async def publish(self, valuation: "Valuation") -> "SubmitResult":
        """Submit the AccountSet. Raises SubmissionError when it does not settle with success."""
        await self.connection.ensure_connected()
        client = self.connection.client
        account = client.address
        tx = self.build_tx(account, valuation)

        async with self.submission_queue.slot(account) as waited:
            if self.metrics:
                self.metrics.submission_queue_wait_ms.observe(waited * 1000.0)
            prepared = await client.prepare(tx)
            blob = client.sign(prepared)
            result = await client.submit_and_wait(blob)

        if not result.succeeded:
            if self.metrics:
                self.metrics.submission_failures.labels(kind="account_set").inc()
            raise SubmissionError(result.result_code, result.tx_hash, kind="account_set")

        log.info(json.dumps({
            "event": "valuation_published",
            "value": valuation.value,
            "tx_hash": result.tx_hash,
        }))
        return result
