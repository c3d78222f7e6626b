"""External collaborators: reasoning and market data providers."""

from thesis_validator.providers.market_data import (
    CATEGORY_CREDIBILITY,
    AlphaVantageProvider,
    MarketDataCategory,
    MarketDataError,
    MarketDataProvider,
    MarketDataResult,
    MarketEvidence,
    gather_market_evidence,
)
from thesis_validator.providers.reasoning import (
    OllamaReasoningProvider,
    ReasoningError,
    ReasoningProvider,
)

__all__ = [
    "CATEGORY_CREDIBILITY",
    "AlphaVantageProvider",
    "MarketDataCategory",
    "MarketDataError",
    "MarketDataProvider",
    "MarketDataResult",
    "MarketEvidence",
    "OllamaReasoningProvider",
    "ReasoningError",
    "ReasoningProvider",
    "gather_market_evidence",
]
