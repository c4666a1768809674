"""
Tests for HTTP and static valuation sources.
"""
import httpx
import pytest

from offerbot.errors import SourceFetchError
from offerbot.oracle.sources import HttpJsonPriceSource, StaticPriceSource, dig


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_dig_paths():
    payload = {"avm": {"value": 5}, "data": [{"price": 7}]}
    assert dig(payload, "avm.value") == 5
    assert dig(payload, "data.0.price") == 7
    assert dig(payload, "data.3.price") is None
    assert dig(payload, "avm.missing") is None
    assert dig(payload, "avm.value.deeper") is None


class TestHttpJsonPriceSource:
    @pytest.mark.asyncio
    async def test_reads_value_and_confidence(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["headers"] = request.headers
            return httpx.Response(200, json={"avm": {"value": "1015000", "confidence": 0.82}})

        async with _client(handler) as client:
            src = HttpJsonPriceSource(
                "avm", "https://avm.example/v1", "avm.value", confidence_path="avm.confidence",
                params={"address": "1 Main St"}, api_key="k1", api_key_param="apiKey", weight=0.3, client=client,
            )
            quote = await src.fetch()

        assert quote.value == 1_015_000.0
        assert quote.confidence == 0.82
        assert quote.weight == 0.3
        assert seen["params"] == {"address": "1 Main St", "apiKey": "k1"}

    @pytest.mark.asyncio
    async def test_api_key_header_by_default(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["X-Api-Key"] == "k2"
            return httpx.Response(200, json={"v": 10})

        async with _client(handler) as client:
            quote = await HttpJsonPriceSource("s", "https://x.example", "v", api_key="k2", client=client).fetch()
        assert quote.confidence == 0.75

    @pytest.mark.asyncio
    async def test_missing_value_returns_none(self):
        async with _client(lambda r: httpx.Response(200, json={"other": 1})) as client:
            assert await HttpJsonPriceSource("s", "https://x.example", "v", client=client).fetch() is None

    @pytest.mark.asyncio
    async def test_bad_confidence_uses_default(self):
        body = {"v": 10, "c": "high"}
        async with _client(lambda r: httpx.Response(200, json=body)) as client:
            src = HttpJsonPriceSource("s", "https://x.example", "v", confidence_path="c",
                                      default_confidence=0.6, client=client)
            assert (await src.fetch()).confidence == 0.6

    @pytest.mark.asyncio
    async def test_http_error_raises_source_error(self):
        async with _client(lambda r: httpx.Response(503)) as client:
            with pytest.raises(SourceFetchError) as info:
                await HttpJsonPriceSource("s", "https://x.example", "v", client=client).fetch()
        assert info.value.source == "s"
        assert "HTTPStatusError" in info.value.reason

    @pytest.mark.asyncio
    async def test_invalid_json_raises_source_error(self):
        async with _client(lambda r: httpx.Response(200, content=b"<html>")) as client:
            with pytest.raises(SourceFetchError, match="invalid JSON"):
                await HttpJsonPriceSource("s", "https://x.example", "v", client=client).fetch()

    @pytest.mark.asyncio
    async def test_non_numeric_value_raises_source_error(self):
        async with _client(lambda r: httpx.Response(200, json={"v": "n/a"})) as client:
            with pytest.raises(SourceFetchError, match="non-numeric"):
                await HttpJsonPriceSource("s", "https://x.example", "v", client=client).fetch()

    @pytest.mark.asyncio
    async def test_shared_client_not_closed(self):
        async with _client(lambda r: httpx.Response(200, json={"v": 1})) as client:
            src = HttpJsonPriceSource("s", "https://x.example", "v", client=client)
            await src.close()
            assert not client.is_closed

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        src = HttpJsonPriceSource("s", "https://x.example", "v")
        await src.close()
        assert src.client.is_closed


@pytest.mark.asyncio
async def test_static_source():
    quote = await StaticPriceSource("appraisal", 1_000_000.0, 0.85, weight=0.3).fetch()
    assert (quote.source, quote.value, quote.confidence, quote.weight) == ("appraisal", 1_000_000.0, 0.85, 0.3)
