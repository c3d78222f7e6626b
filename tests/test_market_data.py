"""
Tests for the Alpha Vantage market data provider using a mocked transport.
"""

import httpx
import pytest

from thesis_validator.evidence import SourceType
from thesis_validator.providers.market_data import (
    AlphaVantageProvider,
    MarketDataCategory,
    MarketDataError,
    gather_market_evidence,
)

QUOTE = {
    "Global Quote": {
        "01. symbol": "ACME",
        "05. price": "123.4500",
        "06. volume": "1500000",
        "10. change percent": "1.25%",
    }
}

OVERVIEW = {
    "Symbol": "ACME",
    "Name": "Acme Corp",
    "Sector": "Industrials",
    "Industry": "Machinery",
    "MarketCapitalization": "25000000000",
    "PERatio": "18.2",
    "EPS": "6.78",
    "52WeekLow": "90.00",
    "52WeekHigh": "130.00",
}


def make_provider(handler) -> AlphaVantageProvider:
    return AlphaVantageProvider(
        base_url="https://av.test",
        api_key="demo",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestAlphaVantageProvider:
    @pytest.mark.asyncio
    async def test_quote(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=QUOTE)

        provider = make_provider(handler)
        try:
            result = await provider.quote("ACME")
        finally:
            await provider.close()

        assert result.category == MarketDataCategory.QUOTE
        assert result.summary == "ACME: $123.45 (1.25%) - Volume: 1,500,000"
        assert result.credibility == 0.95
        assert seen[0].url.path == "/query"
        assert seen[0].url.params["function"] == "GLOBAL_QUOTE"
        assert seen[0].url.params["apikey"] == "demo"

    @pytest.mark.asyncio
    async def test_error_payload_raises(self) -> None:
        provider = make_provider(
            lambda request: httpx.Response(200, json={"Note": "API call frequency exceeded"})
        )
        try:
            with pytest.raises(MarketDataError, match="frequency"):
                await provider.fundamentals("ACME")
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_http_error_raises(self) -> None:
        provider = make_provider(lambda request: httpx.Response(503))
        try:
            with pytest.raises(MarketDataError):
                await provider.quote("ACME")
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_result_as_evidence(self) -> None:
        provider = make_provider(lambda request: httpx.Response(200, json=OVERVIEW))
        try:
            result = await provider.fundamentals("ACME")
        finally:
            await provider.close()

        evidence = result.as_evidence()

        assert "Acme Corp (ACME)" in evidence.content
        assert "Market Cap: $25.00B" in evidence.content
        assert evidence.source_type == SourceType.FINANCIAL
        assert evidence.credibility == 0.95
        assert evidence.provenance["category"] == "fundamentals"


class TestGatherMarketEvidence:
    @pytest.mark.asyncio
    async def test_keeps_successes_and_records_failures(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            function = request.url.params["function"]
            if function == "GLOBAL_QUOTE":
                return httpx.Response(200, json=QUOTE)
            if function == "OVERVIEW":
                return httpx.Response(200, json=OVERVIEW)
            return httpx.Response(200, json={"Error Message": f"{function} unavailable"})

        provider = make_provider(handler)
        try:
            bundle = await gather_market_evidence(provider, "ACME")
        finally:
            await provider.close()

        assert [r.category for r in bundle.results] == [
            MarketDataCategory.QUOTE,
            MarketDataCategory.FUNDAMENTALS,
        ]
        assert set(bundle.failures) == {"news", "earnings", "technicals"}
        assert "NEWS_SENTIMENT unavailable" in bundle.failures["news"]
