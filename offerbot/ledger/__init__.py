"""
Ledger value types shared by the reconciler and the ledger adapter.
"""

from offerbot.ledger.models import (
    MATCH_TOLERANCE,
    Amount,
    AssetIdentity,
    DesiredOffer,
    LedgerOffer,
    NativeAmount,
    TokenAmount,
    parse_amount,
    parse_ledger_offer,
)

__all__ = [
    "MATCH_TOLERANCE",
    "Amount",
    "AssetIdentity",
    "DesiredOffer",
    "LedgerOffer",
    "NativeAmount",
    "TokenAmount",
    "parse_amount",
    "parse_ledger_offer",
]
