"""Shared typed models for the curator."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum


class FetchStatus(str, Enum):
    """Lifecycle states of one topic's curation run."""

    IDLE = "idle"
    SEARCHING = "searching"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Topic:
    """A research interest the pipeline searches for."""

    id: str
    title: str
    search_prompt: str
    last_updated: str | None = None


@dataclass(frozen=True, slots=True)
class Paper:
    """Curated paper record attributed to one topic."""

    id: str
    topic_id: str
    title: str
    authors: tuple[str, ...]
    published_date: date
    url: str
    summary: str
    abstract: str
    engagement_score: int
    engagement_reason: str = ""
    abstract_ja: str | None = None
    impact_badge: str | None = None
    citation_count: str | None = None
    web_mention_count: str | None = None
    image_url: str | None = None


@dataclass(slots=True)
class DayGroup:
    """Papers sharing one publication date, in display order."""

    date: date
    papers: list[Paper] = field(default_factory=list)


def new_topic(title: str, search_prompt: str) -> Topic:
    """Validate form input and create a topic with a fresh id."""
    title, search_prompt = _validate_topic_fields(title, search_prompt)
    return Topic(id=uuid.uuid4().hex, title=title, search_prompt=search_prompt)


def edit_topic(topic: Topic, title: str | None = None, search_prompt: str | None = None) -> Topic:
    """Return a copy of topic with the edited fields; the id never changes."""
    title, search_prompt = _validate_topic_fields(
        topic.title if title is None else title,
        topic.search_prompt if search_prompt is None else search_prompt,
    )
    return replace(topic, title=title, search_prompt=search_prompt)


def _validate_topic_fields(title: str, search_prompt: str) -> tuple[str, str]:
    title = (title or "").strip()
    search_prompt = (search_prompt or "").strip()
    if not title:
        raise ValueError("Topic title must not be empty")
    if not search_prompt:
        raise ValueError("Topic search prompt must not be empty")
    return title, search_prompt
