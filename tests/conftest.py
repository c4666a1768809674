"""
Pytest configuration and shared fakes.

FakeLedgerClient keeps an in-memory order book for one account and applies
OfferCreate / OfferCancel on tesSUCCESS, so reconcile cycles can be run end
to end without a network.
"""

import asyncio
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set
from unittest.mock import patch

import pytest

from offerbot.config.config import REQUIRED_ENV
from offerbot.connection.resilient_connection import ConnectionConfig, ResilientConnection
from offerbot.execution.state import ReconciliationState
from offerbot.infra.ledger_client import AccountInfo, SubmitResult
from offerbot.infra.submission_queue import SubmissionQueue
from offerbot.ledger.models import AssetIdentity, DesiredOffer, LedgerOffer, TokenAmount, parse_amount
from offerbot.oracle.models import SourceQuote

BOT_ACCOUNT = "rBotAccount1111111111111111111111"
USD_ISSUER = "rUsdIssuer22222222222222222222222"


class FakeLedgerClient:
    def __init__(self, address: str = BOT_ACCOUNT, offers: Optional[List[LedgerOffer]] = None):
        self.address = address
        self.connected = False
        self.offers: List[LedgerOffer] = list(offers or [])
        self.connect_failures = 0
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.list_calls = 0
        self.list_error: Optional[Exception] = None
        self.result_code = "tesSUCCESS"
        self.fail_cancel_sequences: Set[int] = set()
        self.submitted: List[Dict[str, Any]] = []
        self.account_info: Optional[AccountInfo] = AccountInfo(balance_drops=55_000_000, sequence=7)
        self._next_seq = 100

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise OSError("connection refused")
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    async def list_offers(self, account: str) -> List[LedgerOffer]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.offers)

    async def prepare(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        prepared = {**tx, "Sequence": self._next_seq, "Fee": "12"}
        self._next_seq += 1
        return prepared

    def sign(self, prepared: Dict[str, Any]) -> str:
        return json.dumps(prepared)

    async def submit_and_wait(self, blob: str) -> SubmitResult:
        tx = json.loads(blob)
        self.submitted.append(tx)
        seq = tx["Sequence"]
        code = self.result_code
        if tx["TransactionType"] == "OfferCancel" and tx["OfferSequence"] in self.fail_cancel_sequences:
            code = "tecNO_PERMISSION"
        if code == "tesSUCCESS":
            self._apply(tx)
        return SubmitResult(tx_hash=f"HASH{seq}", result_code=code)

    async def get_account_info(self, account: str) -> Optional[AccountInfo]:
        return self.account_info

    def _apply(self, tx: Dict[str, Any]) -> None:
        kind = tx["TransactionType"]
        if kind == "OfferCreate":
            self.offers.append(LedgerOffer(
                sequence=tx["Sequence"],
                taker_gets=parse_amount(tx["TakerGets"]),
                taker_pays=parse_amount(tx["TakerPays"]),
            ))
        elif kind == "OfferCancel":
            self.offers = [o for o in self.offers if o.sequence != tx["OfferSequence"]]

    def submitted_of(self, kind: str) -> List[Dict[str, Any]]:
        return [tx for tx in self.submitted if tx["TransactionType"] == kind]


class FakePriceSource:
    def __init__(self, name: str, value: Optional[float], confidence: float = 0.9,
                 weight: Optional[float] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.name = name
        self.value = value
        self.confidence = confidence
        self.weight = weight
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch(self) -> Optional[SourceQuote]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.value is None:
            return None
        return SourceQuote(source=self.name, value=self.value, confidence=self.confidence, weight=self.weight)


def make_offer(sequence: int, rla: str, usd: str, issuer: str = USD_ISSUER) -> LedgerOffer:
    """An RLA-for-USD offer as the ledger would report it."""
    return LedgerOffer(
        sequence=sequence,
        taker_gets=TokenAmount("RLA", BOT_ACCOUNT, Decimal(rla)),
        taker_pays=TokenAmount("USD", issuer, Decimal(usd)),
    )


@pytest.fixture
def desired() -> DesiredOffer:
    return DesiredOffer(
        sell=AssetIdentity("RLA", BOT_ACCOUNT),
        sell_amount=Decimal("100"),
        buy=AssetIdentity("USD", USD_ISSUER),
        buy_amount=Decimal("70000"),
    )


@pytest.fixture
def fake_client() -> FakeLedgerClient:
    client = FakeLedgerClient()
    client.connected = True
    return client


@pytest.fixture
def state() -> ReconciliationState:
    return ReconciliationState()


@pytest.fixture
def connection(fake_client, state) -> ResilientConnection:
    cfg = ConnectionConfig(max_retries=3, backoff_step_sec=0.0, reconnect_delay_sec=0.0)
    return ResilientConnection(fake_client, state, cfg)


@pytest.fixture
def submission_queue() -> SubmissionQueue:
    return SubmissionQueue()


OPTIONAL_ENV = [
    "SELL_ISSUER", "BUY_ISSUER", "CHECK_INTERVAL_SECONDS", "MAX_RETRIES", "RECONNECT_DELAY_SEC",
    "MIN_CONFIDENCE_THRESHOLD", "ORACLE_ENABLED", "ORACLE_UPDATE_INTERVAL_MS", "ORACLE_SOURCES_FILE",
    "SOURCE_TIMEOUT_SEC", "SYNTHETIC_VALUATION", "SYNTHETIC_CONFIDENCE", "TOTAL_TOKEN_SUPPLY",
    "ORACLE_PUBLISH_ON_CHAIN", "ENABLE_ADMIN_FEE", "ADMIN_FEE_PERCENTAGE", "COMPLIANCE_ENABLED",
    "COMPLIANCE_DIR", "REPORTING_INTERVAL_SEC", "COMPLIANCE_RETENTION_DAYS", "METRICS_PORT",
    "ALERT_WEBHOOK_URL", "ALERT_WEBHOOK_TYPE", "ALERT_ENABLED", "DEBUG_MODE", "LOG_FILE",
]

BASE_ENV = {
    "XRPL_NETWORK": "wss://s.altnet.rippletest.net:51233",
    "XRPL_ACCOUNT_SEED": "sEdTestSeed",
    "SELL_CURRENCY": "RLA",
    "SELL_AMOUNT": "100",
    "BUY_CURRENCY": "USD",
    "BUY_ISSUER": USD_ISSUER,
    "BUY_AMOUNT": "70000",
}


@pytest.fixture
def env(monkeypatch):
    """A minimal valid environment; .env files are never read."""
    for key in REQUIRED_ENV + OPTIONAL_ENV:
        monkeypatch.delenv(key, raising=False)
    for key, value in BASE_ENV.items():
        monkeypatch.setenv(key, value)
    with patch("offerbot.config.config.load_dotenv"):
        yield monkeypatch
