"""
Valuation sources.

A source answers one question: what does it think the asset is worth right
now, and how sure is it. `fetch()` returns a SourceQuote, or None when the
source has nothing to say this round. Any exception is treated as a failure
of that source alone by the aggregator.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from offerbot.errors import SourceFetchError
from offerbot.oracle.models import SourceQuote


class PriceSource(Protocol):
    name: str

    async def fetch(self) -> Optional[SourceQuote]: ...


def dig(payload: Any, path: str) -> Any:
    """Follow a dotted path ("avm.value", "data.0.price") into decoded JSON."""
    node = payload
    for part in path.split("."):
        if isinstance(node, Mapping):
            node = node.get(part)
        elif isinstance(node, list) and part.isdigit():
            idx = int(part)
            node = node[idx] if idx < len(node) else None
        else:
            return None
        if node is None:
            return None
    return node


class HttpJsonPriceSource:
    """
    GET a JSON document and read the value (and optionally the confidence)
    from dotted paths.

    If a shared client is passed in it is not closed by close().
    """

    def __init__(
        self,
        name: str,
        url: str,
        value_path: str,
        confidence_path: Optional[str] = None,
        default_confidence: float = 0.75,
        weight: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        api_key: Optional[str] = None,
        api_key_param: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.name = name
        self.url = url
        self.value_path = value_path
        self.confidence_path = confidence_path
        self.default_confidence = default_confidence
        self.weight = weight
        self.params = dict(params or {})
        self.headers = dict(headers or {})
        if api_key:
            # Key goes in the query string when the API wants it there, else as a header.
            if api_key_param:
                self.params[api_key_param] = api_key
            else:
                self.headers.setdefault("X-Api-Key", api_key)
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def fetch(self) -> Optional[SourceQuote]:
        try:
            resp = await self.client.get(self.url, params=self.params, headers=self.headers)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            raise SourceFetchError(self.name, f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise SourceFetchError(self.name, f"invalid JSON: {exc}") from exc

        raw_value = dig(payload, self.value_path)
        if raw_value is None:
            return None
        try:
            value = float(raw_value)
        except (TypeError, ValueError) as exc:
            raise SourceFetchError(self.name, f"non-numeric value at {self.value_path}: {raw_value!r}") from exc

        confidence = self.default_confidence
        if self.confidence_path:
            raw_conf = dig(payload, self.confidence_path)
            if raw_conf is not None:
                try:
                    confidence = float(raw_conf)
                except (TypeError, ValueError):
                    confidence = self.default_confidence

        return SourceQuote(source=self.name, value=value, confidence=confidence, weight=self.weight)


class StaticPriceSource:
    """A fixed appraisal, e.g. the last signed valuation report."""

    def __init__(self, name: str, value: float, confidence: float, weight: Optional[float] = None) -> None:
        self.name = name
        self.value = value
        self.confidence = confidence
        self.weight = weight

    async def fetch(self) -> Optional[SourceQuote]:
        return SourceQuote(source=self.name, value=self.value, confidence=self.confidence, weight=self.weight)
