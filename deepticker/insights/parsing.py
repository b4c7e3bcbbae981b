"""Defensive parsing of model replies into insights.

Models are asked for JSON but often wrap it in prose or code fences. Parsing
tries a strict decode of the whole reply first, then the first balanced JSON
object found in the text. When neither yields an object that validates as the
requested insight, ``ResponseParseFailed`` is raised with the raw reply kept.
"""

import json
from typing import Any

import structlog
from pydantic import ValidationError

from deepticker.errors import ResponseParseFailed
from deepticker.insights.models import INSIGHT_MODELS, Insight, InsightKind

logger = structlog.get_logger(__name__)

# Phrases that mark a briefing as alarmist rather than informative.
ALARMIST_PHRASES = (
    "significant decline",
    "major losses",
    "severe downturn",
    "catastrophic",
    "crash",
    "collapse",
    "devastating",
    "extremely risky",
    "avoid at all costs",
    "massive selloff",
    "panic selling",
    "market crash",
    "bear market incoming",
)

_decoder = json.JSONDecoder()


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the JSON object in ``text``, or None.

    The whole text is decoded first. Failing that, decoding is attempted at
    each ``{`` in turn and the first complete object wins.
    """
    if not text or not text.strip():
        return None

    stripped = text.strip()
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    start = stripped.find("{")
    while start != -1:
        try:
            candidate, _ = _decoder.raw_decode(stripped, start)
        except json.JSONDecodeError:
            candidate = None
        if isinstance(candidate, dict):
            return candidate
        start = stripped.find("{", start + 1)
    return None


def is_alarmist(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in ALARMIST_PHRASES)


def _unwrap(kind: InsightKind, data: dict[str, Any]) -> dict[str, Any]:
    # Summaries sometimes arrive as {"insights": {...}, "stock_updates": {...}}.
    if kind is InsightKind.SUMMARY and isinstance(data.get("insights"), dict):
        merged = {**data["insights"], **{k: v for k, v in data.items() if k != "insights"}}
        if "summary" not in merged and isinstance(merged.get("stock_updates"), dict):
            merged["summary"] = " ".join(str(v) for v in merged["stock_updates"].values())
        return merged
    return data


def parse_insight(
    kind: InsightKind,
    raw_text: str,
    *,
    provider: str,
    symbol: str | None = None,
    reject_alarmist: bool = False,
) -> Insight:
    """Coerce a model reply into the insight variant for ``kind``.

    Args:
        kind: Requested insight kind.
        raw_text: The reply text, untouched.
        provider: Provider that produced the reply.
        symbol: Target symbol for predictions.
        reject_alarmist: Reject briefings that read as alarmist.

    Returns:
        The validated insight.

    Raises:
        ResponseParseFailed: If no JSON object is found or it fails validation.
    """
    data = extract_json_object(raw_text)
    if data is None:
        logger.warning("insight_parse_no_json", provider=provider, kind=kind.value)
        raise ResponseParseFailed(
            "Response did not contain a JSON object",
            provider=provider,
            raw_text=raw_text,
        )

    payload = _unwrap(kind, data)
    payload = {k: v for k, v in payload.items() if k not in ("kind", "provider", "raw_text")}
    payload["provider"] = provider
    payload["raw_text"] = raw_text
    if kind is InsightKind.PREDICTION and symbol and not payload.get("symbol"):
        payload["symbol"] = symbol

    try:
        insight = INSIGHT_MODELS[kind].model_validate(payload)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        logger.warning("insight_parse_invalid", provider=provider, kind=kind.value, fields=fields)
        raise ResponseParseFailed(
            f"Response is not a valid {kind.value} insight: {', '.join(fields)}",
            provider=provider,
            raw_text=raw_text,
        ) from e

    if reject_alarmist and kind is InsightKind.BRIEFING and is_alarmist(raw_text):
        logger.warning("insight_rejected_alarmist", provider=provider)
        raise ResponseParseFailed(
            "Briefing rejected as alarmist",
            provider=provider,
            raw_text=raw_text,
        )

    return insight  # type: ignore[return-value]
