"""
Market data provider.

Read-only queries keyed by ticker symbol. Every result carries a fixed
credibility weight by data category, used when the result is recorded as
evidence.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, Field

from thesis_validator.config import get_settings
from thesis_validator.evidence.schemas import EvidenceCreate, Sentiment, SourceType

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class MarketDataCategory(str, Enum):
    QUOTE = "quote"
    FUNDAMENTALS = "fundamentals"
    NEWS = "news"
    EARNINGS = "earnings"
    TECHNICALS = "technicals"


CATEGORY_CREDIBILITY: dict[MarketDataCategory, float] = {
    MarketDataCategory.QUOTE: 0.95,
    MarketDataCategory.FUNDAMENTALS: 0.95,
    MarketDataCategory.EARNINGS: 0.95,
    MarketDataCategory.NEWS: 0.75,
    MarketDataCategory.TECHNICALS: 0.90,
}

CATEGORY_SOURCE_TYPE: dict[MarketDataCategory, SourceType] = {
    MarketDataCategory.QUOTE: SourceType.FINANCIAL,
    MarketDataCategory.FUNDAMENTALS: SourceType.FINANCIAL,
    MarketDataCategory.EARNINGS: SourceType.FINANCIAL,
    MarketDataCategory.NEWS: SourceType.WEB,
    MarketDataCategory.TECHNICALS: SourceType.DATA,
}


class MarketDataError(Exception):
    """A market data request failed or returned an error payload."""


class MarketDataResult(BaseModel):
    """One category of market data for a symbol."""

    category: MarketDataCategory = Field(..., description="Data category")
    symbol: str = Field(..., description="Ticker symbol")
    data: dict[str, Any] = Field(default_factory=dict, description="Raw provider payload")
    summary: str = Field(default="", description="Human-readable digest")
    credibility: float = Field(..., ge=0.0, le=1.0, description="Category credibility weight")
    retrieved_at: datetime = Field(default_factory=_now_utc)

    def as_evidence(self) -> EvidenceCreate:
        """Express this result as evidence input."""
        return EvidenceCreate(
            content=self.summary or f"{self.category.value} data for {self.symbol}",
            source_type=CATEGORY_SOURCE_TYPE[self.category],
            sentiment=Sentiment.NEUTRAL,
            credibility=self.credibility,
            source_title=f"{self.symbol} {self.category.value}",
            provenance={"provider": "market_data", "category": self.category.value},
            metadata={"symbol": self.symbol},
            retrieved_at=self.retrieved_at,
        )


class MarketEvidence(BaseModel):
    """Outcome of gathering several categories; failures do not abort the rest."""

    symbol: str
    results: list[MarketDataResult] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)


class MarketDataProvider(ABC):
    """Abstract base class for market data providers."""

    @abstractmethod
    async def quote(self, symbol: str) -> MarketDataResult:
        ...

    @abstractmethod
    async def fundamentals(self, symbol: str) -> MarketDataResult:
        ...

    @abstractmethod
    async def news(self, symbol: str, limit: int = 10) -> MarketDataResult:
        ...

    @abstractmethod
    async def earnings(self, symbol: str) -> MarketDataResult:
        ...

    @abstractmethod
    async def technicals(self, symbol: str) -> MarketDataResult:
        ...

    async def fetch(self, category: MarketDataCategory, symbol: str) -> MarketDataResult:
        """Dispatch to the query for ``category``."""
        handlers = {
            MarketDataCategory.QUOTE: self.quote,
            MarketDataCategory.FUNDAMENTALS: self.fundamentals,
            MarketDataCategory.NEWS: self.news,
            MarketDataCategory.EARNINGS: self.earnings,
            MarketDataCategory.TECHNICALS: self.technicals,
        }
        return await handlers[MarketDataCategory(category)](symbol)

    async def close(self) -> None:
        return None


def _to_float(value: Any) -> float | None:
    try:
        return float(str(value).rstrip("%"))
    except (TypeError, ValueError):
        return None


def _fmt(value: float | None, digits: int = 2) -> str:
    return f"{value:.{digits}f}" if value is not None else "n/a"


class AlphaVantageProvider(MarketDataProvider):
    """
    Market data from the Alpha Vantage query API.

    All requests go to ``{base_url}/query`` with a ``function`` parameter.
    Alpha Vantage reports errors and rate limits inside a 200 response, so
    those payloads are turned into ``MarketDataError`` as well.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            base_url: API base URL (uses config if not provided).
            api_key: API key (uses config if not provided).
            timeout: Request timeout in seconds (uses config if not provided).
            transport: Optional httpx transport, e.g. a mock in tests.
        """
        settings = get_settings()
        self._base_url = base_url or settings.market_data_base_url
        self._api_key = api_key or settings.market_data_api_key
        self._timeout = timeout or settings.market_data_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _query(self, function: str, **params: Any) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.get(
                "/query",
                params={"function": function, "apikey": self._api_key, **params},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise MarketDataError(f"{function} request failed: {e}") from e
        except ValueError as e:
            raise MarketDataError(f"{function} returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise MarketDataError(f"{function} returned an unexpected payload")
        for key in ("Error Message", "Note", "Information"):
            if key in payload:
                raise MarketDataError(f"{function}: {payload[key]}")
        return payload

    def _result(
        self,
        category: MarketDataCategory,
        symbol: str,
        data: dict[str, Any],
        summary: str,
    ) -> MarketDataResult:
        return MarketDataResult(
            category=category,
            symbol=symbol,
            data=data,
            summary=summary,
            credibility=CATEGORY_CREDIBILITY[category],
        )

    async def quote(self, symbol: str) -> MarketDataResult:
        payload = await self._query("GLOBAL_QUOTE", symbol=symbol)
        quote = payload.get("Global Quote") or {}
        if not quote:
            raise MarketDataError(f"No quote for {symbol}")
        price = _to_float(quote.get("05. price"))
        volume = _to_float(quote.get("06. volume"))
        change = quote.get("10. change percent", "n/a")
        summary = f"{symbol}: ${_fmt(price)} ({change}) - Volume: {int(volume or 0):,}"
        return self._result(MarketDataCategory.QUOTE, symbol, quote, summary)

    async def fundamentals(self, symbol: str) -> MarketDataResult:
        overview = await self._query("OVERVIEW", symbol=symbol)
        if not overview.get("Symbol"):
            raise MarketDataError(f"No company overview for {symbol}")
        market_cap = _to_float(overview.get("MarketCapitalization"))
        summary = "\n".join(
            [
                f"{overview.get('Name', symbol)} ({overview.get('Symbol', symbol)})",
                f"Sector: {overview.get('Sector', 'n/a')}, Industry: {overview.get('Industry', 'n/a')}",
                f"Market Cap: ${_fmt(market_cap / 1e9 if market_cap else None)}B",
                f"P/E: {_fmt(_to_float(overview.get('PERatio')))}, "
                f"EPS: ${_fmt(_to_float(overview.get('EPS')))}",
                f"52W Range: ${_fmt(_to_float(overview.get('52WeekLow')))} - "
                f"${_fmt(_to_float(overview.get('52WeekHigh')))}",
            ]
        )
        return self._result(MarketDataCategory.FUNDAMENTALS, symbol, overview, summary)

    async def news(self, symbol: str, limit: int = 10) -> MarketDataResult:
        payload = await self._query("NEWS_SENTIMENT", tickers=symbol, limit=limit)
        articles = (payload.get("feed") or [])[:limit]
        scores = [
            s for s in (_to_float(a.get("overall_sentiment_score")) for a in articles) if s is not None
        ]
        avg = sum(scores) / len(scores) if scores else 0.0
        label = "Bullish" if avg > 0.15 else "Bearish" if avg < -0.15 else "Neutral"
        lines = [
            f"{len(articles)} recent news articles for {symbol}",
            f"Average Sentiment: {avg:.2f} ({label})",
        ]
        lines += [f"- {a.get('title', '')} ({a.get('source', '')})" for a in articles[:3]]
        return self._result(
            MarketDataCategory.NEWS,
            symbol,
            {"feed": articles, "average_sentiment": avg},
            "\n".join(lines),
        )

    async def earnings(self, symbol: str) -> MarketDataResult:
        payload = await self._query("EARNINGS", symbol=symbol)
        quarterly = payload.get("quarterlyEarnings") or []
        if quarterly:
            latest = quarterly[0]
            summary = "\n".join(
                [
                    f"Latest Earnings for {symbol}:",
                    f"Reported EPS: ${_fmt(_to_float(latest.get('reportedEPS')))} "
                    f"vs Est: ${_fmt(_to_float(latest.get('estimatedEPS')))}",
                    f"Surprise: {_fmt(_to_float(latest.get('surprisePercentage')))}%",
                ]
            )
        else:
            summary = f"No recent earnings data for {symbol}"
        return self._result(MarketDataCategory.EARNINGS, symbol, payload, summary)

    async def technicals(self, symbol: str) -> MarketDataResult:
        rsi_payload, macd_payload = await asyncio.gather(
            self._query("RSI", symbol=symbol, interval="daily", time_period=14, series_type="close"),
            self._query("MACD", symbol=symbol, interval="daily", series_type="close"),
        )
        rsi = self._latest_indicator(rsi_payload, "Technical Analysis: RSI", "RSI")
        macd = self._latest_indicator(macd_payload, "Technical Analysis: MACD", "MACD")
        lines = [f"Technical Indicators for {symbol}:"]
        if rsi is not None:
            label = "Overbought" if rsi > 70 else "Oversold" if rsi < 30 else "Neutral"
            lines.append(f"RSI(14): {rsi:.2f} ({label})")
        if macd is not None:
            lines.append(f"MACD: {macd:.4f}")
        return self._result(
            MarketDataCategory.TECHNICALS,
            symbol,
            {"rsi": rsi, "macd": macd},
            "\n".join(lines),
        )

    @staticmethod
    def _latest_indicator(payload: dict[str, Any], series_key: str, field: str) -> float | None:
        series = payload.get(series_key) or {}
        if not series:
            return None
        latest_date = max(series)
        return _to_float(series[latest_date].get(field))


async def gather_market_evidence(
    provider: MarketDataProvider,
    symbol: str,
    categories: list[MarketDataCategory] | None = None,
) -> MarketEvidence:
    """
    Fetch several categories concurrently, keeping whatever succeeds.

    Args:
        provider: Market data provider.
        symbol: Ticker symbol.
        categories: Categories to fetch; all of them by default.

    Returns:
        Successful results plus a category -> error message map of failures.
    """
    categories = categories or list(MarketDataCategory)
    outcomes = await asyncio.gather(
        *(provider.fetch(c, symbol) for c in categories),
        return_exceptions=True,
    )
    bundle = MarketEvidence(symbol=symbol)
    for category, outcome in zip(categories, outcomes):
        if isinstance(outcome, MarketDataResult):
            bundle.results.append(outcome)
        elif isinstance(outcome, Exception):
            logger.warning(f"Failed to get {category.value} for {symbol}: {outcome}")
            bundle.failures[category.value] = str(outcome)
        else:
            raise outcome
    return bundle
