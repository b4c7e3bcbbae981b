"""Insight schema returned by the analysis dispatcher.

Every insight variant carries the provider that produced it, its kind, the raw
reply text and a generation timestamp. Model replies are loosely shaped, so the
validators here coerce the common variations (percent-scale confidences,
free-text directions, camelCase keys) into one canonical form.
"""

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums
# ============================================================================


class InsightKind(str, Enum):
    """Kinds of AI insight the dispatcher can produce."""

    SUMMARY = "summary"
    PREDICTION = "prediction"
    BRIEFING = "briefing"


class Direction(str, Enum):
    """Predicted price direction."""

    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class RiskLevel(str, Enum):
    """Portfolio risk level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Sentiment(str, Enum):
    """Overall tone of a summary."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# ============================================================================
# Coercion helpers
# ============================================================================


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        text = value.strip().rstrip("%").strip()
        try:
            return float(text)
        except ValueError:
            return None
    return None


def normalize_confidence(value: Any) -> float | None:
    """Map a confidence onto [0, 1].

    Strings ending in ``%`` are always percentages; other values in (1, 100]
    are read as percentages too. The result is clamped.
    """
    number = _to_number(value)
    if number is None:
        return None
    if isinstance(value, str) and value.strip().endswith("%"):
        number /= 100.0
    elif 1.0 < number <= 100.0:
        number /= 100.0
    return min(1.0, max(0.0, number))


_BULLISH_WORDS = frozenset({"bull", "bullish", "buy", "upward", "upside"})
_BEARISH_WORDS = frozenset({"bear", "bearish", "sell", "downward", "downside"})


def coerce_direction(value: Any) -> Direction:
    """Map free text onto a direction; unrecognised text is neutral.

    Only whole words count. A bullish or bearish word outranks a bare
    "up"/"down", and text carrying both sides is neutral.
    """
    if isinstance(value, Direction):
        return value
    if not isinstance(value, str):
        return Direction.NEUTRAL
    words = set(re.findall(r"[a-z]+", value.lower()))
    bullish = bool(words & _BULLISH_WORDS)
    bearish = bool(words & _BEARISH_WORDS)
    if bullish != bearish:
        return Direction.UP if bullish else Direction.DOWN
    if bullish:
        return Direction.NEUTRAL
    if ("up" in words) != ("down" in words):
        return Direction.UP if "up" in words else Direction.DOWN
    return Direction.NEUTRAL


def _clamp_percent(value: Any) -> float | None:
    number = _to_number(value)
    if number is None:
        return None
    return min(100.0, max(0.0, number))


def _join_text(value: Any) -> Any:
    if isinstance(value, list):
        return "\n".join(str(item) for item in value)
    return value


# ============================================================================
# Insight variants
# ============================================================================


class InsightBase(BaseModel):
    """Fields shared by every insight."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    provider: str
    raw_text: str = ""
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class PortfolioSummary(InsightBase):
    """Portfolio-wide summary with risk and sentiment."""

    kind: Literal[InsightKind.SUMMARY] = InsightKind.SUMMARY
    summary: str = Field(..., min_length=1)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    sentiment: Sentiment = Sentiment.NEUTRAL
    confidence: float | None = Field(
        default=None,
        validation_alias=AliasChoices("confidence", "confidence_score"),
    )
    bullet_points: list[str] = Field(default_factory=list)
    stock_updates: dict[str, str] = Field(default_factory=dict)

    @field_validator("risk_level", mode="before")
    @classmethod
    def coerce_risk_level(cls, v: Any) -> RiskLevel:
        if isinstance(v, RiskLevel):
            return v
        text = str(v or "").lower()
        if "high" in text:
            return RiskLevel.HIGH
        if "low" in text:
            return RiskLevel.LOW
        return RiskLevel.MEDIUM

    @field_validator("sentiment", mode="before")
    @classmethod
    def coerce_sentiment(cls, v: Any) -> Sentiment:
        if isinstance(v, Sentiment):
            return v
        text = str(v or "").lower()
        if any(word in text for word in ("pos", "bull", "optimis")):
            return Sentiment.POSITIVE
        if any(word in text for word in ("neg", "bear", "pessimis")):
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float | None:
        return normalize_confidence(v)

    @field_validator("bullet_points", mode="before")
    @classmethod
    def listify_bullets(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [line.strip("-• ").strip() for line in v.splitlines() if line.strip()]
        return [str(item) for item in v]

    @field_validator("stock_updates", mode="before")
    @classmethod
    def uppercase_updates(cls, v: Any) -> dict[str, str]:
        if not isinstance(v, dict):
            return {}
        return {str(k).strip().upper(): str(text) for k, text in v.items()}


class StockPrediction(InsightBase):
    """Short-term direction call for one symbol."""

    kind: Literal[InsightKind.PREDICTION] = InsightKind.PREDICTION
    symbol: str | None = Field(
        default=None,
        validation_alias=AliasChoices("symbol", "stockSymbol", "stock_symbol"),
    )
    direction: Direction = Field(..., validation_alias=AliasChoices("direction", "prediction"))
    confidence: float = Field(..., ge=0.0, le=1.0)
    predicted_change_percent: float = Field(
        default=0.0,
        validation_alias=AliasChoices(
            "predicted_change_percent", "predicted_change", "predictedChange"
        ),
    )
    reasoning: str = ""
    profit_likelihood: float | None = None
    gain_potential: float | None = None
    upside_chance: float | None = None

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else v

    @field_validator("direction", mode="before")
    @classmethod
    def coerce_direction(cls, v: Any) -> Direction:
        return coerce_direction(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        confidence = normalize_confidence(v)
        if confidence is None:
            raise ValueError("confidence must be a number")
        return confidence

    @field_validator("predicted_change_percent", mode="before")
    @classmethod
    def parse_change(cls, v: Any) -> float:
        number = _to_number(v)
        return 0.0 if number is None else number

    @field_validator("reasoning", mode="before")
    @classmethod
    def default_reasoning(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("profit_likelihood", "gain_potential", "upside_chance", mode="before")
    @classmethod
    def clamp_scores(cls, v: Any) -> float | None:
        return _clamp_percent(v)


class MarketingBriefing(InsightBase):
    """Narrative market briefing for the portfolio's symbols."""

    kind: Literal[InsightKind.BRIEFING] = InsightKind.BRIEFING
    overview: str = Field(..., min_length=1)
    key_drivers: str = Field(
        default="", validation_alias=AliasChoices("key_drivers", "keyDrivers")
    )
    highlights_and_activity: str = Field(
        default="",
        validation_alias=AliasChoices("highlights_and_activity", "highlightsAndActivity"),
    )
    risk_factors: str = Field(
        default="", validation_alias=AliasChoices("risk_factors", "riskFactors")
    )

    @field_validator("overview", "key_drivers", "highlights_and_activity", "risk_factors", mode="before")
    @classmethod
    def join_lists(cls, v: Any) -> Any:
        return _join_text(v)


Insight = PortfolioSummary | StockPrediction | MarketingBriefing

INSIGHT_MODELS: dict[InsightKind, type[InsightBase]] = {
    InsightKind.SUMMARY: PortfolioSummary,
    InsightKind.PREDICTION: StockPrediction,
    InsightKind.BRIEFING: MarketingBriefing,
}
