"""
Ledger client boundary.

`LedgerClient` is the only surface the core talks to. `XrplLedgerClient`
implements it over xrpl-py's websocket client: it owns the wallet, turns the
core's transaction dicts into xrpl-py models, and parses account_offers
entries into `LedgerOffer` before they leave this module.

connect/disconnect are only ever called by ResilientConnection.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from xrpl import XRPLException
from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.asyncio.transaction import XRPLReliableSubmissionException, autofill, submit_and_wait
from xrpl.models.requests import AccountInfo as AccountInfoRequest
from xrpl.models.requests import AccountOffers
from xrpl.models.transactions.transaction import Transaction
from xrpl.transaction import sign
from xrpl.wallet import Wallet

from offerbot.errors import LedgerConnectionError, LedgerRequestError
from offerbot.ledger.models import DROPS_PER_XRP, LedgerOffer, parse_ledger_offer

log = logging.getLogger("offerbot")

SUCCESS_CODE = "tesSUCCESS"
ACCOUNT_NOT_FOUND = "actNotFound"
UNKNOWN_RESULT = "unknown"

# Engine result codes: tec/tef/tel/tem/ter/tes followed by the upper-case name
_RESULT_CODE_RE = re.compile(r"\b(te[cflmrs][A-Z_]+)\b")


def result_code_from_error(exc: Exception) -> str:
    """Pull the engine result code out of xrpl-py's "Transaction failed: <code>" style messages."""
    match = _RESULT_CODE_RE.search(str(exc))
    return match.group(1) if match else UNKNOWN_RESULT


def blob_hash(blob: str) -> Optional[str]:
    """Transaction hash of a signed blob."""
    try:
        return Transaction.from_blob(blob).get_hash()
    except (XRPLException, ValueError, KeyError) as exc:
        log.warning(json.dumps({"event": "tx_hash_unavailable", "error": str(exc)}))
        return None


@dataclass(frozen=True)
class SubmitResult:
    tx_hash: Optional[str]
    result_code: str

    @property
    def succeeded(self) -> bool:
        return self.result_code == SUCCESS_CODE


@dataclass(frozen=True)
class AccountInfo:
    balance_drops: int
    sequence: int

    @property
    def balance_xrp(self) -> Decimal:
        return Decimal(self.balance_drops) / DROPS_PER_XRP


class LedgerClient(Protocol):
    @property
    def address(self) -> str: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    async def list_offers(self, account: str) -> List[LedgerOffer]: ...

    async def prepare(self, tx: Dict[str, Any]) -> Dict[str, Any]: ...

    def sign(self, prepared: Dict[str, Any]) -> str: ...

    async def submit_and_wait(self, blob: str) -> SubmitResult: ...

    async def get_account_info(self, account: str) -> Optional[AccountInfo]: ...


class XrplLedgerClient:
    """xrpl-py backed LedgerClient. A fresh websocket client is opened on every connect()."""

    def __init__(
        self,
        url: str,
        seed: str,
        request_timeout: float = 20.0,
        submit_timeout: float = 90.0,
    ) -> None:
        self.url = url
        self._wallet = Wallet.from_seed(seed)
        self._request_timeout = request_timeout
        self._submit_timeout = submit_timeout
        self._client: Optional[AsyncWebsocketClient] = None

    @property
    def address(self) -> str:
        return self._wallet.address

    async def connect(self) -> None:
        client = AsyncWebsocketClient(self.url)
        await asyncio.wait_for(client.open(), timeout=self._request_timeout)
        self._client = client

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None and client.is_open():
            await client.close()

    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_open()

    def _require_client(self) -> AsyncWebsocketClient:
        if not self.is_connected():
            raise LedgerConnectionError(f"not connected to {self.url}")
        return self._client

    async def _request(self, command: str, request) -> Dict[str, Any]:
        client = self._require_client()
        try:
            response = await asyncio.wait_for(client.request(request), timeout=self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise LedgerConnectionError(f"{command} timed out") from exc
        if not response.is_successful():
            raise LedgerRequestError(command, str(response.result.get("error", response.result)))
        return response.result

    async def list_offers(self, account: str) -> List[LedgerOffer]:
        """All open offers of `account`; empty when the account does not exist yet."""
        offers: List[LedgerOffer] = []
        marker = None
        while True:
            try:
                result = await self._request("account_offers", AccountOffers(account=account, ledger_index="validated", marker=marker))
            except LedgerRequestError as exc:
                if exc.error == ACCOUNT_NOT_FOUND:
                    log.warning(json.dumps({"event": "account_not_found", "account": account}))
                    return []
                raise
            for raw in result.get("offers", []):
                try:
                    offers.append(parse_ledger_offer(raw))
                except (KeyError, ValueError) as exc:
                    log.warning(json.dumps({"event": "offer_parse_skipped", "error": str(exc)}))
            marker = result.get("marker")
            if not marker:
                return offers

    async def get_account_info(self, account: str) -> Optional[AccountInfo]:
        try:
            result = await self._request("account_info", AccountInfoRequest(account=account, ledger_index="validated"))
        except LedgerRequestError as exc:
            if exc.error == ACCOUNT_NOT_FOUND:
                return None
            raise
        data = result["account_data"]
        return AccountInfo(balance_drops=int(data["Balance"]), sequence=int(data["Sequence"]))

    async def prepare(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        """Autofill fee, sequence and last ledger sequence."""
        client = self._require_client()
        prepared = await asyncio.wait_for(
            autofill(Transaction.from_xrpl(tx), client),
            timeout=self._request_timeout,
        )
        return prepared.to_xrpl()

    def sign(self, prepared: Dict[str, Any]) -> str:
        signed = sign(Transaction.from_xrpl(prepared), self._wallet)
        return signed.blob()

    async def submit_and_wait(self, blob: str) -> SubmitResult:
        """Submit and wait for validation. A failed final result comes back as a SubmitResult, not an exception."""
        client = self._require_client()
        try:
            response = await asyncio.wait_for(submit_and_wait(blob, client), timeout=self._submit_timeout)
        except XRPLReliableSubmissionException as exc:
            code = result_code_from_error(exc)
            tx_hash = blob_hash(blob)
            log.warning(json.dumps({"event": "submission_rejected", "result_code": code, "tx_hash": tx_hash, "error": str(exc)}))
            return SubmitResult(tx_hash=tx_hash, result_code=code)
        except asyncio.TimeoutError as exc:
            raise LedgerConnectionError("submit_and_wait timed out") from exc
        result = response.result
        meta = result.get("meta") or {}
        code = meta.get("TransactionResult") if isinstance(meta, dict) else None
        return SubmitResult(
            tx_hash=result.get("hash") or blob_hash(blob),
            result_code=code or str(result.get("engine_result", UNKNOWN_RESULT)),
        )
