"""Prompt templates for portfolio insights.

Each insight kind has a system prompt that pins the JSON reply shape and a
default user prompt the caller may replace. Whichever user prompt is used, the
portfolio context is appended after it.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from deepticker.data.models import DailyBar
from deepticker.insights.models import InsightKind
from deepticker.portfolio.models import PortfolioSnapshot


@dataclass(frozen=True)
class PromptSpec:
    """Prompts and sampling settings for one insight kind."""

    system: str
    default_prompt: str
    temperature: float
    max_tokens: int


SUMMARY_SYSTEM_PROMPT = """You are a financial analyst AI. Your task is to provide a concise daily briefing for a stock portfolio.

Respond with a single JSON object and nothing else, using these keys:
- "summary" (string): two or three sentences on the portfolio's overall health.
- "risk_level" (string, one of "low", "medium", "high").
- "sentiment" (string, one of "positive", "neutral", "negative").
- "confidence" (number between 0 and 1): likelihood the portfolio gains value today.
- "bullet_points" (array of strings): short actionable observations.
- "stock_updates" (object): one or two sentences per symbol on what moves it today."""

PREDICTION_SYSTEM_PROMPT = """You are a financial analyst AI specialized in short-term stock predictions.
Analyze stock data and provide concise predictions with confidence levels.
Focus on technical indicators, volume trends, and recent market behavior.

Respond with a single JSON object and nothing else, using these keys. All
percentage-based values are numbers between 0 and 100.
- "direction" (string, one of "up", "down", "neutral"): next trading day's movement.
- "confidence" (number): how sure you are of the direction.
- "predicted_change" (number): expected change in percent, negative for declines.
- "reasoning" (string): brief explanation of the analysis.
- "profit_likelihood" (number): chance the position closes the day in profit.
- "gain_potential" (number): plausible upside in percent of price.
- "upside_chance" (number): chance the price moves higher."""

BRIEFING_SYSTEM_PROMPT = """You are an expert financial analyst AI writing a daily market briefing.
Keep the tone balanced and factual. Respond with a single JSON object with four
string keys: "overview", "key_drivers", "highlights_and_activity" and "risk_factors"."""

DEFAULT_SUMMARY_PROMPT = (
    "Analyze the following stock portfolio and provide a concise summary of its overall "
    "health, diversification, and risk profile. Offer actionable suggestions for improvement."
)

DEFAULT_PREDICTION_PROMPT = (
    "Using the current quote and the recent daily history below, predict the target "
    "symbol's movement for the next trading day."
)

DEFAULT_BRIEFING_PROMPT = (
    "Provide a daily market briefing and portfolio health assessment. Analyze the provided "
    "stock symbols in the context of current market events, including earnings reports and "
    "institutional activity. Include brief recommendations for diversification or risk management."
)

PROMPTS: dict[InsightKind, PromptSpec] = {
    InsightKind.SUMMARY: PromptSpec(
        system=SUMMARY_SYSTEM_PROMPT,
        default_prompt=DEFAULT_SUMMARY_PROMPT,
        temperature=0.4,
        max_tokens=800,
    ),
    InsightKind.PREDICTION: PromptSpec(
        system=PREDICTION_SYSTEM_PROMPT,
        default_prompt=DEFAULT_PREDICTION_PROMPT,
        temperature=0.3,
        max_tokens=500,
    ),
    InsightKind.BRIEFING: PromptSpec(
        system=BRIEFING_SYSTEM_PROMPT,
        default_prompt=DEFAULT_BRIEFING_PROMPT,
        temperature=0.5,
        max_tokens=1200,
    ),
}


def get_prompt_spec(kind: InsightKind) -> PromptSpec:
    return PROMPTS[kind]


def prompt_template(kind: InsightKind, override: str | None = None) -> str:
    """The user prompt before context is appended. Overrides are used verbatim."""
    if override is not None and override.strip():
        return override
    return PROMPTS[kind].default_prompt


def format_context(
    snapshot: PortfolioSnapshot,
    symbol: str | None = None,
    history: Sequence[DailyBar] | None = None,
) -> str:
    """Render the snapshot as plain-text context lines.

    Daily history is rendered only for a target symbol.
    """
    lines = ["Portfolio holdings:"]
    for position in snapshot.positions:
        shares = f"{position.holding.shares:g}"
        quote = position.quote
        if quote is None:
            lines.append(f"- {position.symbol}: {shares} shares, price unavailable")
            continue
        line = (
            f"- {position.symbol}: {shares} shares, price ${quote.price:.2f}, "
            f"change {quote.change:+.2f} ({quote.change_percent:+.2f}%)"
        )
        if quote.previous_close is not None:
            line += f", previous close ${quote.previous_close:.2f}"
        lines.append(line)

    if not snapshot.positions:
        lines.append("- (no holdings)")

    lines.append(f"Total portfolio value: ${snapshot.total_value:.2f}")
    lines.append(
        f"Daily change: {snapshot.daily_change:+.2f} ({snapshot.daily_change_percent:+.2f}%)"
    )
    if symbol:
        lines.append(f"Target symbol: {symbol.strip().upper()}")
        if history:
            lines.append(f"Recent historical data (last {len(history)} trading days):")
            for bar in history:
                lines.append(
                    f"- {bar.date.isoformat()}: close ${bar.close:.2f}, volume {bar.volume:,}"
                )
    return "\n".join(lines)


def build_prompt(
    kind: InsightKind,
    snapshot: PortfolioSnapshot,
    override: str | None = None,
    symbol: str | None = None,
    history: Sequence[DailyBar] | None = None,
) -> str:
    """Full user prompt: template (or override) followed by the portfolio context."""
    context = format_context(snapshot, symbol, history)
    return f"{prompt_template(kind, override)}\n\n{context}"
