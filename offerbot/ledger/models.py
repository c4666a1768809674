"""
Ledger-side value types: asset identities, amounts, offers and the desired offer.

The ledger reports an offer side either as a bare string (native drops) or as
an object (issued token). `parse_amount` resolves that shape once, at the
boundary, into `NativeAmount` or `TokenAmount`. Matching logic only ever sees
the variants and compares them through `identity` and `value`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional, Union

NATIVE_CURRENCY = "XRP"
DROPS_PER_XRP = Decimal(1_000_000)

# Offers at or above 90% of the desired amounts count as the live target.
# Absorbs partial fills without re-creating the offer.
MATCH_TOLERANCE = Decimal("0.9")


def round_half_up(value: Decimal) -> Decimal:
    return value.quantize(Decimal(1), rounding=ROUND_HALF_UP)


def format_decimal(value: Decimal) -> str:
    """Plain (non-exponent) string form for ledger JSON."""
    text = format(value.normalize(), "f")
    return text if text != "-0" else "0"


@dataclass(frozen=True)
class AssetIdentity:
    currency: str
    issuer: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return self.currency == NATIVE_CURRENCY and self.issuer is None

    def amount(self, value: Decimal) -> "Amount":
        if self.is_native:
            return NativeAmount(drops=int(round_half_up(value * DROPS_PER_XRP)))
        return TokenAmount(currency=self.currency, issuer=self.issuer or "", value=value)

    def __str__(self) -> str:
        return self.currency if self.issuer is None else f"{self.currency}.{self.issuer}"


@dataclass(frozen=True)
class NativeAmount:
    drops: int

    @property
    def identity(self) -> AssetIdentity:
        return AssetIdentity(NATIVE_CURRENCY)

    @property
    def value(self) -> Decimal:
        return Decimal(self.drops) / DROPS_PER_XRP

    def to_ledger(self) -> str:
        return str(self.drops)


@dataclass(frozen=True)
class TokenAmount:
    currency: str
    issuer: str
    value: Decimal

    @property
    def identity(self) -> AssetIdentity:
        return AssetIdentity(self.currency, self.issuer)

    def to_ledger(self) -> Dict[str, str]:
        return {"currency": self.currency, "issuer": self.issuer, "value": format_decimal(self.value)}


Amount = Union[NativeAmount, TokenAmount]


def parse_amount(raw: Any) -> Amount:
    """Resolve a ledger amount (drops string or token object) into a tagged variant."""
    if isinstance(raw, str):
        return NativeAmount(drops=int(raw))
    if isinstance(raw, Mapping):
        return TokenAmount(
            currency=str(raw["currency"]),
            issuer=str(raw.get("issuer", "")),
            value=Decimal(str(raw.get("value", "0"))),
        )
    raise ValueError(f"unrecognised amount shape: {raw!r}")


@dataclass(frozen=True)
class LedgerOffer:
    sequence: int
    taker_gets: Amount
    taker_pays: Amount
    flags: int = 0


def parse_ledger_offer(raw: Mapping[str, Any]) -> LedgerOffer:
    """Build a LedgerOffer from an account_offers entry (either key casing)."""
    gets = raw.get("taker_gets", raw.get("TakerGets"))
    pays = raw.get("taker_pays", raw.get("TakerPays"))
    seq = raw.get("seq", raw.get("Sequence"))
    if gets is None or pays is None or seq is None:
        raise ValueError(f"incomplete offer entry: {dict(raw)!r}")
    return LedgerOffer(
        sequence=int(seq),
        taker_gets=parse_amount(gets),
        taker_pays=parse_amount(pays),
        flags=int(raw.get("flags", raw.get("Flags", 0)) or 0),
    )


@dataclass(frozen=True)
class DesiredOffer:
    """
    The standing offer we want on the book.

    `sell` is what takers get (our token), `buy` is what they pay. Effectively
    constant, except that an accepted valuation re-derives `buy_amount`.
    """
    sell: AssetIdentity
    sell_amount: Decimal
    buy: AssetIdentity
    buy_amount: Decimal

    @property
    def price(self) -> Decimal:
        if self.sell_amount == 0:
            return Decimal(0)
        return self.buy_amount / self.sell_amount

    def same_pair(self, offer: LedgerOffer) -> bool:
        return offer.taker_gets.identity == self.sell and offer.taker_pays.identity == self.buy

    def matches(self, offer: LedgerOffer, tolerance: Decimal = MATCH_TOLERANCE) -> bool:
        if not self.same_pair(offer):
            return False
        return (
            offer.taker_gets.value >= self.sell_amount * tolerance
            and offer.taker_pays.value >= self.buy_amount * tolerance
        )

    def repriced(self, valuation_value: float, total_supply: Decimal) -> "DesiredOffer":
        """buy_amount = round(sell_amount * V / S)."""
        if total_supply <= 0:
            raise ValueError("total_supply must be > 0")
        value = Decimal(str(valuation_value))
        return replace(self, buy_amount=round_half_up(self.sell_amount * value / total_supply))

    def buy_amount_after_fee(self, fee_pct: Decimal) -> Decimal:
        return self.buy_amount - (self.buy_amount * fee_pct / Decimal(100))
