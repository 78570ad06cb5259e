"""Stage 2: turn a raw search report into scored, trust-normalized papers."""

from __future__ import annotations

import logging
import math
import os
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, Callable
from urllib.parse import urlsplit

from anthropic_client import claude_extract
from llm_client import extract_structured
from models import Paper
from trust_policy import normalize_url

LOGGER = logging.getLogger(__name__)

Extractor = Callable[[str, dict[str, Any]], Any]

MUST_READ_THRESHOLD = 80
DEFAULT_CITATION_COUNT = "0"
DEFAULT_WEB_MENTION_COUNT = "N/A"

REQUIRED_FIELDS: tuple[str, ...] = (
    "title",
    "authors",
    "publishedDate",
    "url",
    "summary",
    "abstract",
    "abstractJa",
    "engagementScore",
    "citationCount",
    "webMentionCount",
)

OPTIONAL_FIELDS: tuple[str, ...] = ("engagementReason", "impactBadge", "imageUrl")

# Requested from the service but defaulted locally when it leaves them out.
_DEFAULTED_FIELDS: tuple[str, ...] = ("url", "abstractJa", "citationCount", "webMentionCount")

_DECODE_REQUIRED: tuple[str, ...] = tuple(name for name in REQUIRED_FIELDS if name not in _DEFAULTED_FIELDS)

_NULLABLE_STRING = {"type": ["string", "null"]}

# Every property is listed as required so the schema is accepted by strict
# structured-output modes; optional fields are expressed as nullable.
PAPER_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "authors": {"type": "array", "items": {"type": "string"}},
        "publishedDate": {"type": "string", "description": "YYYY-MM-DD"},
        "url": {"type": "string"},
        "summary": {"type": "string"},
        "abstract": {"type": "string"},
        "abstractJa": {"type": "string"},
        "engagementScore": {"type": "number"},
        "engagementReason": _NULLABLE_STRING,
        "impactBadge": _NULLABLE_STRING,
        "citationCount": {"type": "string"},
        "webMentionCount": {"type": "string"},
        "imageUrl": _NULLABLE_STRING,
    },
    "required": list(REQUIRED_FIELDS + OPTIONAL_FIELDS),
    "additionalProperties": False,
}

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"papers": {"type": "array", "items": PAPER_ITEM_SCHEMA}},
    "required": ["papers"],
    "additionalProperties": False,
}

_EXTRACTION_TEMPLATE = """SOURCE TEXT:
{source}

TODAY: {today}

TASK:
1. Extract the research papers from the source text above.
2. Calculate 'engagementScore' (0-100):
   - Base: 50
   - Citation boost: +1 per citation (max +30).
   - Viral boost (Web Buzz):
     - If 'Web Buzz' mentions "k" (thousands) or > 1000 hits -> +40 points.
     - If 'Web Buzz' mentions "Viral", "Trending", "Reddit", "Twitter", "X" -> +30 points.
     - If 'Web Buzz' has > 10 sources/posts -> +20 points.
     - If 'Web Buzz' is "Academic only" or "0" -> 0 points.
   - Recency: published within the last 30 days of TODAY -> +10.
3. Translate the summary to Japanese.
4. Return strict JSON.

FIELDS:
- title
- authors (array of strings)
- publishedDate (YYYY-MM-DD)
- url
- summary (Japanese, 1 sentence punchline)
- abstract (English original)
- abstractJa (Japanese translation)
- engagementScore (number)
- engagementReason (short explanation, e.g. "New but Viral: 12k hits")
- impactBadge (short string, e.g. "Viral Hit", "Highly Cited", "New Arrival")
- citationCount (string, e.g. "0" or "150")
- webMentionCount (string, e.g. "12.5k hits", "Viral on X", "Academic only"; "N/A" if missing)
- imageUrl (string or null)"""


class ExtractionDecodeError(ValueError):
    """Raised when an extraction payload does not match the paper schema."""


@dataclass(frozen=True, slots=True)
class PaperCandidate:
    """One decoded extraction record, before topic stamping and defaults."""

    title: str
    authors: tuple[str, ...]
    published_date: date
    url: str
    summary: str
    abstract: str
    engagement_score: float
    abstract_ja: str | None = None
    citation_count: str | None = None
    web_mention_count: str | None = None
    engagement_reason: str | None = None
    impact_badge: str | None = None
    image_url: str | None = None


def build_extraction_prompt(raw_search_text: str, today: date | None = None) -> str:
    """Render the extraction instructions around a raw search report."""
    today = today or datetime.now(UTC).date()
    return _EXTRACTION_TEMPLATE.format(source=raw_search_text.strip(), today=today.isoformat())


def curate(topic_id: str, raw_search_text: str, extractor: Extractor | None = None) -> list[Paper]:
    """Extract, validate and post-process papers for one topic.

    Service/transport errors raised by the extractor propagate to the caller.
    A missing or malformed payload yields an empty list; candidates are never
    returned partially.
    """
    if not raw_search_text or not raw_search_text.strip():
        LOGGER.info("Empty search report for topic_id=%s; nothing to curate", topic_id)
        return []

    extractor = extractor or default_extractor()
    payload = extractor(build_extraction_prompt(raw_search_text), RESPONSE_SCHEMA)
    if payload is None:
        LOGGER.warning("Extraction returned no payload for topic_id=%s", topic_id)
        return []

    try:
        candidates = decode_candidates(payload)
    except ExtractionDecodeError as exc:
        LOGGER.warning("Discarding malformed extraction payload for topic_id=%s: %s", topic_id, exc)
        return []

    papers = [to_paper(candidate, topic_id) for candidate in candidates]
    LOGGER.info("Curated %s papers for topic_id=%s", len(papers), topic_id)
    return papers


def default_extractor() -> Extractor:
    """Pick the structured-extraction backend from EXTRACTION_PROVIDER."""
    provider = os.getenv("EXTRACTION_PROVIDER", "openai").strip().lower()
    if provider == "openai":
        return extract_structured
    if provider == "anthropic":
        return claude_extract
    raise RuntimeError(f"Unsupported EXTRACTION_PROVIDER: {provider!r}")


def decode_candidates(payload: Any) -> list[PaperCandidate]:
    """Strictly decode an extraction payload into typed candidates.

    Accepts ``{"papers": [...]}`` or a bare list. Raises ExtractionDecodeError
    on the first item that violates the schema.
    """
    if isinstance(payload, dict):
        if "papers" not in payload:
            raise ExtractionDecodeError("payload object has no 'papers' key")
        items = payload["papers"]
    else:
        items = payload

    if not isinstance(items, list):
        raise ExtractionDecodeError(f"expected a list of papers, got {type(items).__name__}")

    return [_decode_item(index, item) for index, item in enumerate(items)]


def _decode_item(index: int, item: Any) -> PaperCandidate:
    if not isinstance(item, dict):
        raise ExtractionDecodeError(f"paper #{index} is not an object")

    missing = [name for name in _DECODE_REQUIRED if item.get(name) is None]
    if missing:
        raise ExtractionDecodeError(f"paper #{index} missing required fields: {missing}")

    strings = {}
    for name in ("title", "publishedDate", "summary", "abstract"):
        value = item[name]
        if not isinstance(value, str):
            raise ExtractionDecodeError(f"paper #{index} field {name!r} is not a string")
        strings[name] = value.strip()

    if not strings["title"]:
        raise ExtractionDecodeError(f"paper #{index} has a blank title")

    authors = item["authors"]
    if not isinstance(authors, list) or not all(isinstance(a, str) for a in authors):
        raise ExtractionDecodeError(f"paper #{index} field 'authors' is not a list of strings")

    score = item["engagementScore"]
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ExtractionDecodeError(f"paper #{index} field 'engagementScore' is not a number")
    if not math.isfinite(score):
        raise ExtractionDecodeError(f"paper #{index} field 'engagementScore' is not finite")

    try:
        published = datetime.strptime(strings["publishedDate"], "%Y-%m-%d").date()
    except ValueError as exc:
        raise ExtractionDecodeError(
            f"paper #{index} publishedDate {strings['publishedDate']!r} is not YYYY-MM-DD"
        ) from exc

    optional = {}
    for name in OPTIONAL_FIELDS + _DEFAULTED_FIELDS:
        value = item.get(name)
        if value is not None and not isinstance(value, str):
            raise ExtractionDecodeError(f"paper #{index} field {name!r} is not a string")
        optional[name] = value.strip() if isinstance(value, str) and value.strip() else None

    return PaperCandidate(
        title=strings["title"],
        authors=tuple(a.strip() for a in authors if a.strip()),
        published_date=published,
        url=optional["url"] or "",
        summary=strings["summary"],
        abstract=strings["abstract"],
        abstract_ja=optional["abstractJa"],
        engagement_score=float(score),
        citation_count=optional["citationCount"],
        web_mention_count=optional["webMentionCount"],
        engagement_reason=optional["engagementReason"],
        impact_badge=optional["impactBadge"],
        image_url=optional["imageUrl"],
    )


def to_paper(candidate: PaperCandidate, topic_id: str) -> Paper:
    """Apply trust normalization, identity and defaults to one candidate."""
    url = normalize_url(candidate.url, candidate.title)
    score = clamp_score(candidate.engagement_score)

    return Paper(
        id=url or _fallback_id(),
        topic_id=topic_id,
        title=candidate.title,
        authors=candidate.authors,
        published_date=candidate.published_date,
        url=url,
        summary=candidate.summary,
        abstract=candidate.abstract,
        abstract_ja=candidate.abstract_ja or None,
        engagement_score=score,
        engagement_reason=candidate.engagement_reason or "",
        impact_badge=candidate.impact_badge or ("Must Read" if score > MUST_READ_THRESHOLD else "New Arrival"),
        citation_count=candidate.citation_count or DEFAULT_CITATION_COUNT,
        web_mention_count=candidate.web_mention_count or DEFAULT_WEB_MENTION_COUNT,
        image_url=candidate.image_url if is_absolute_url(candidate.image_url) else None,
    )


def clamp_score(value: float) -> int:
    return max(0, min(100, int(round(value))))


def is_absolute_url(value: str | None) -> bool:
    """True for a syntactically valid absolute http(s) URL."""
    if not value:
        return False
    try:
        parts = urlsplit(value)
        host = parts.hostname
    except ValueError:
        return False
    return parts.scheme.lower() in {"http", "https"} and bool(host)


def _fallback_id() -> str:
    return uuid.uuid4().hex[:9]
