"""Opportunity scoring for scanned quotes.

A quote first has to pass the filter stage (price, volume, float,
pre-market change band and market-cap buckets). An unreported float (0)
is only rejected when ``require_float`` is set. It is then scored:

  score      = 2*|change%| + volume_term + 5*news_rating + type_bonus
  volume_term = min(volume / 1M, 10) * 5          (up to 50 points)
  type_bonus = 0.5*volume_term   for VOLUME_SPIKE
               |change%|         for PRE_MARKET_MOVER
  confidence = 50 + 10 per condition met (volume > 1M, volume > 5M,
               |change%| > 5, |change%| > 10, news >= GOOD)

Score and confidence are clamped to [0, 100]. Only opportunities scoring
at least ``min_opportunity_score`` are emitted.
"""

from decimal import Decimal

from tradescope.config import MarketSettings
from tradescope.models import NewsRating, Opportunity, OpportunityType, Quote

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_MILLION = Decimal("1000000")


def _clamp(value: Decimal) -> Decimal:
    return max(_ZERO, min(value, _HUNDRED))


class OpportunityScorer:
    """Filters and scores quotes into Opportunities.

    Args:
        settings: Filter thresholds, market-cap buckets and the emission
            threshold.
    """

    def __init__(self, settings: MarketSettings) -> None:
        self._settings = settings

    @property
    def min_score(self) -> Decimal:
        return self._settings.min_opportunity_score

    def passes_filters(self, quote: Quote) -> bool:
        """Return True if the quote passes every filter and a market-cap bucket."""
        s = self._settings

        if quote.last_price < s.min_price or quote.last_price > s.max_price:
            return False

        min_volume = s.min_pre_market_volume if quote.is_pre_market else s.min_volume
        if quote.volume < min_volume:
            return False

        if quote.shares_float > 0 or s.require_float:
            if quote.shares_float < s.min_float or quote.shares_float > s.max_float:
                return False

        if quote.is_pre_market:
            increase = abs(quote.pre_market_change_percent)
            if increase < s.min_pre_market_increase or increase > s.max_pre_market_increase:
                return False

        cap_millions = quote.market_cap / _MILLION
        if s.enable_small_cap and s.small_cap_min <= cap_millions <= s.small_cap_max:
            return True
        if s.enable_mid_cap and s.mid_cap_min <= cap_millions <= s.mid_cap_max:
            return True
        if s.enable_large_cap and cap_millions >= s.large_cap_min:
            return True
        return False

    def score(self, quote: Quote, opportunity_type: OpportunityType) -> Opportunity:
        """Score a quote unconditionally (no filter or threshold check)."""
        return Opportunity(
            symbol=quote.symbol,
            timestamp=quote.timestamp,
            opportunity_type=opportunity_type,
            score=self.calculate_score(quote, opportunity_type),
            volume_change=Decimal(quote.volume) / _MILLION,
            price_change_percent=quote.change_percent,
            news_sentiment=quote.news_rating,
            confidence=self.calculate_confidence(quote),
            reason=self.describe(quote),
        )

    def evaluate(
        self, quote: Quote, opportunity_type: OpportunityType
    ) -> Opportunity | None:
        """Return an Opportunity when the quote passes filters and scores high enough."""
        if not self.passes_filters(quote):
            return None
        opportunity = self.score(quote, opportunity_type)
        if opportunity.score < self.min_score:
            return None
        return opportunity

    @staticmethod
    def calculate_score(quote: Quote, opportunity_type: OpportunityType) -> Decimal:
        move = abs(quote.change_percent)
        volume_term = min(Decimal(quote.volume) / _MILLION, Decimal("10")) * 5

        score = move * 2 + volume_term + int(quote.news_rating) * 5
        if opportunity_type == OpportunityType.VOLUME_SPIKE:
            score += volume_term * Decimal("0.5")
        elif opportunity_type == OpportunityType.PRE_MARKET_MOVER:
            score += move
        return _clamp(score)

    @staticmethod
    def calculate_confidence(quote: Quote) -> Decimal:
        move = abs(quote.change_percent)
        confidence = Decimal("50")
        if quote.volume > 1_000_000:
            confidence += 10
        if quote.volume > 5_000_000:
            confidence += 10
        if move > 5:
            confidence += 10
        if move > 10:
            confidence += 10
        if quote.news_rating >= NewsRating.GOOD:
            confidence += 10
        return _clamp(confidence)

    @staticmethod
    def describe(quote: Quote) -> str:
        reasons = []
        if abs(quote.change_percent) > 10:
            reasons.append(f"{quote.change_percent:.1f}% price movement")
        if quote.volume > 5_000_000:
            reasons.append(f"High volume: {quote.volume:,}")
        if quote.news_rating >= NewsRating.GOOD:
            reasons.append(f"Positive news sentiment: {quote.news_rating.name}")
        return ", ".join(reasons)
