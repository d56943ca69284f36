# MARKETSCOPE_FEAT: capabilities-001
"""
MARKETSCOPE - Plugin Capabilities
=================================

Small per-capability interfaces. A plugin implements the subset it
supports; consumers ask ``supports(plugin, NewsSource)`` instead of
probing for optional methods.

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass
class MarketQuote:
    """Market data point for one symbol."""

    symbol: str
    price: float
    source: str
    change: Optional[float] = None
    change_percent: Optional[float] = None
    volume: Optional[float] = None
    market_cap: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class NewsArticle:
    """News article returned by a news source."""

    title: str
    url: str
    source: str
    description: str = ""
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sentiment: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class EconomicIndicator:
    """Single economic indicator observation."""

    indicator: str
    value: float
    unit: str
    country: str
    year: int
    source: str


@runtime_checkable
class MarketDataSource(Protocol):
    async def get_market_data(self, symbol: str) -> List[MarketQuote]:
        ...


@runtime_checkable
class NewsSource(Protocol):
    async def get_news(self, query: str, limit: int = 10) -> List[NewsArticle]:
        ...


@runtime_checkable
class EconomicDataSource(Protocol):
    async def get_economic_data(self, indicator: str, country: str) -> List[EconomicIndicator]:
        ...


@runtime_checkable
class AIProvider(Protocol):
    async def generate_text(self, prompt: str, **options: Any) -> str:
        ...


@runtime_checkable
class AnalyticsProvider(Protocol):
    async def analyze(self, data: Dict[str, Any]) -> Dict[str, Any]:
        ...


@runtime_checkable
class OutputFormatter(Protocol):
    def get_supported_formats(self) -> List[str]:
        ...

    async def render(self, report: Dict[str, Any], output_format: str) -> bytes:
        ...


def supports(plugin: Any, capability: type) -> bool:
    """True if the plugin instance implements the capability protocol."""
    return plugin is not None and isinstance(plugin, capability)


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "MarketQuote",
    "NewsArticle",
    "EconomicIndicator",
    "MarketDataSource",
    "NewsSource",
    "EconomicDataSource",
    "AIProvider",
    "AnalyticsProvider",
    "OutputFormatter",
    "supports",
]
