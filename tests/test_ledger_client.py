"""
Tests for XrplLedgerClient against a mocked websocket client.

Paging, account-not-found handling, offer parsing and the mapping of
submit_and_wait outcomes to SubmitResult.
"""
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from xrpl.asyncio.transaction import XRPLReliableSubmissionException
from xrpl.models.response import Response, ResponseStatus
from xrpl.models.transactions.transaction import Transaction
from xrpl.wallet import Wallet

from offerbot.connection.resilient_connection import ConnectionConfig, ResilientConnection
from offerbot.errors import LedgerConnectionError, LedgerRequestError, SubmissionError
from offerbot.execution.offer_reconciler import OfferReconciler
from offerbot.execution.state import ReconciliationState
from offerbot.infra.ledger_client import AccountInfo, XrplLedgerClient, result_code_from_error
from offerbot.infra.submission_queue import SubmissionQueue
from offerbot.monitoring.metrics import OfferBotMetrics

WALLET = Wallet.create()
ISSUER = Wallet.create().address


def _ok(result):
    return Response(status=ResponseStatus.SUCCESS, result=result)


def _error(code):
    return Response(status=ResponseStatus.ERROR, result={"error": code})


def _raw_offer(seq, gets="100", pays="70000"):
    return {
        "seq": seq,
        "flags": 0,
        "taker_gets": {"currency": "RLA", "issuer": WALLET.address, "value": gets},
        "taker_pays": {"currency": "USD", "issuer": ISSUER, "value": pays},
    }


def _signed_cancel(client, sequence=10):
    return client.sign({
        "TransactionType": "OfferCancel",
        "Account": WALLET.address,
        "OfferSequence": 5,
        "Sequence": sequence,
        "Fee": "12",
        "LastLedgerSequence": 1000,
    })


@pytest.fixture
def client():
    ledger = XrplLedgerClient("wss://example.invalid:51233", WALLET.seed)
    ws = MagicMock()
    ws.is_open.return_value = True
    ws.request = AsyncMock()
    ledger._client = ws
    return ledger


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_offers_follows_marker(self, client):
        client._client.request.side_effect = [
            _ok({"offers": [_raw_offer(5)], "marker": "page-2"}),
            _ok({"offers": [_raw_offer(6, "50", "35000")]}),
        ]

        offers = await client.list_offers(WALLET.address)

        assert [o.sequence for o in offers] == [5, 6]
        assert offers[1].taker_pays.value == Decimal(35000)
        requests = [c.args[0] for c in client._client.request.await_args_list]
        assert requests[0].marker is None
        assert requests[1].marker == "page-2"

    @pytest.mark.asyncio
    async def test_unparseable_offer_skipped(self, client):
        client._client.request.side_effect = [_ok({"offers": [{"seq": 7}, _raw_offer(8)]})]
        offers = await client.list_offers(WALLET.address)
        assert [o.sequence for o in offers] == [8]

    @pytest.mark.asyncio
    async def test_unknown_account_has_no_offers(self, client):
        client._client.request.side_effect = [_error("actNotFound")]
        assert await client.list_offers(WALLET.address) == []

    @pytest.mark.asyncio
    async def test_other_errors_raise(self, client):
        client._client.request.side_effect = [_error("lgrNotFound")]
        with pytest.raises(LedgerRequestError) as exc_info:
            await client.list_offers(WALLET.address)
        assert exc_info.value.error == "lgrNotFound"

    @pytest.mark.asyncio
    async def test_account_info(self, client):
        client._client.request.side_effect = [_ok({"account_data": {"Balance": "55000000", "Sequence": 7}})]
        info = await client.get_account_info(WALLET.address)
        assert info == AccountInfo(balance_drops=55_000_000, sequence=7)
        assert info.balance_xrp == Decimal(55)

    @pytest.mark.asyncio
    async def test_unknown_account_info_is_none(self, client):
        client._client.request.side_effect = [_error("actNotFound")]
        assert await client.get_account_info(WALLET.address) is None

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        ledger = XrplLedgerClient("wss://example.invalid:51233", WALLET.seed)
        assert not ledger.is_connected()
        with pytest.raises(LedgerConnectionError):
            await ledger.list_offers(WALLET.address)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_validated_success(self, client):
        blob = _signed_cancel(client)
        response = _ok({"hash": "ABC123", "meta": {"TransactionResult": "tesSUCCESS"}})
        with patch("offerbot.infra.ledger_client.submit_and_wait", AsyncMock(return_value=response)):
            result = await client.submit_and_wait(blob)
        assert result.succeeded
        assert result.tx_hash == "ABC123"

    @pytest.mark.asyncio
    async def test_failed_result_returned_with_code_and_hash(self, client):
        blob = _signed_cancel(client)
        failure = XRPLReliableSubmissionException("Transaction failed: tecUNFUNDED_OFFER")
        with patch("offerbot.infra.ledger_client.submit_and_wait", AsyncMock(side_effect=failure)):
            result = await client.submit_and_wait(blob)

        assert not result.succeeded
        assert result.result_code == "tecUNFUNDED_OFFER"
        assert result.tx_hash == Transaction.from_blob(blob).get_hash()
        assert len(result.tx_hash) == 64

    def test_result_code_from_error(self):
        assert result_code_from_error(Exception("Transaction failed: tefPAST_SEQ")) == "tefPAST_SEQ"
        assert result_code_from_error(Exception("The latest validated ledger sequence 12 is greater")) == "unknown"

    @pytest.mark.asyncio
    async def test_rejection_reaches_reconciler_failure_path(self, client, desired):
        state = ReconciliationState()
        connection = ResilientConnection(client, state, ConnectionConfig(backoff_step_sec=0.0, reconnect_delay_sec=0.0))
        metrics = OfferBotMetrics()
        alerts = MagicMock()
        alerts.alert_submission_failed = AsyncMock()
        reconciler = OfferReconciler(connection, desired, state, SubmissionQueue(), metrics=metrics, alerts=alerts)

        async def fake_autofill(tx, _client):
            return Transaction.from_xrpl({**tx.to_xrpl(), "Sequence": 10, "Fee": "12", "LastLedgerSequence": 1000})

        failure = XRPLReliableSubmissionException("Transaction failed: tecNO_ENTRY")
        with patch("offerbot.infra.ledger_client.autofill", fake_autofill), \
                patch("offerbot.infra.ledger_client.submit_and_wait", AsyncMock(side_effect=failure)):
            with pytest.raises(SubmissionError) as exc_info:
                await reconciler.cancel_offer(5)

        assert exc_info.value.result_code == "tecNO_ENTRY"
        assert exc_info.value.tx_hash is not None
        assert metrics.get_registry().get_sample_value("submission_failures_total", {"kind": "offer_cancel"}) == 1.0
        alerts.alert_submission_failed.assert_awaited_once()
