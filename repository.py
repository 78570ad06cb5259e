"""Topic and paper repository: durable stores plus the in-memory cache."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import UTC, datetime
from typing import Iterable

from csv_store import CsvStore
from models import Paper, Topic

LOGGER = logging.getLogger(__name__)


def merge_papers(existing: Iterable[Paper], incoming: Iterable[Paper]) -> list[Paper]:
    """Overlay incoming papers on existing ones by id, newest first.

    An incoming paper replaces an existing paper with the same id as a whole
    record. Papers sharing a date keep their relative order.
    """
    by_id: dict[str, Paper] = {}
    for paper in existing:
        by_id[paper.id] = paper
    for paper in incoming:
        by_id[paper.id] = paper

    return sorted(by_id.values(), key=lambda p: p.published_date, reverse=True)


class PaperRepository:
    """Single owner of topic/paper state.

    Every mutator writes the durable store first and only then updates the
    cache, so a failed write never leaves the cache ahead of disk.
    """

    def __init__(self, topics: CsvStore[Topic], papers: CsvStore[Paper]) -> None:
        self._topic_store = topics
        self._paper_store = papers
        self._topics: dict[str, Topic] = {}
        self._papers: list[Paper] = []
        self._lock = threading.Lock()

    def load(self) -> None:
        """Replace the cache with the current contents of both stores."""
        topics = self._topic_store.list_all()
        papers = self._paper_store.list_all()
        with self._lock:
            self._topics = {topic.id: topic for topic in topics}
            self._papers = merge_papers([], papers)
        LOGGER.info("Loaded %s topics and %s papers", len(topics), len(papers))

    def topics(self) -> list[Topic]:
        with self._lock:
            return list(self._topics.values())

    def get_topic(self, topic_id: str) -> Topic | None:
        with self._lock:
            return self._topics.get(topic_id)

    def papers(self) -> list[Paper]:
        with self._lock:
            return list(self._papers)

    def papers_for(self, topic_id: str) -> list[Paper]:
        with self._lock:
            return [paper for paper in self._papers if paper.topic_id == topic_id]

    def save_topic(self, topic: Topic) -> None:
        """Create or replace one topic."""
        with self._lock:
            self._topic_store.put(topic)
            self._topics[topic.id] = topic
        LOGGER.info("Saved topic_id=%s title=%r", topic.id, topic.title)

    def touch_topic(self, topic_id: str, when: datetime | None = None) -> Topic | None:
        """Stamp last_updated on a topic; returns None if it no longer exists."""
        stamp = (when or datetime.now(UTC)).isoformat()
        with self._lock:
            topic = self._topics.get(topic_id)
            if topic is None:
                return None
            updated = replace(topic, last_updated=stamp)
            self._topic_store.put(updated)
            self._topics[topic_id] = updated
            return updated

    def delete_topic(self, topic_id: str) -> int:
        """Delete a topic and every paper attributed to it.

        Papers go first, so a failure part way leaves at worst an empty
        topic, never papers whose topic is gone. Returns the number of
        papers removed.
        """
        with self._lock:
            doomed = [paper.id for paper in self._papers if paper.topic_id == topic_id]
            self._paper_store.delete_many(doomed)
            self._papers = [paper for paper in self._papers if paper.topic_id != topic_id]
            self._topic_store.delete(topic_id)
            self._topics.pop(topic_id, None)
        LOGGER.info("Deleted topic_id=%s with %s papers", topic_id, len(doomed))
        return len(doomed)

    def delete_paper(self, paper_id: str) -> bool:
        with self._lock:
            if not any(paper.id == paper_id for paper in self._papers):
                return False
            self._paper_store.delete(paper_id)
            self._papers = [paper for paper in self._papers if paper.id != paper_id]
        LOGGER.info("Deleted paper_id=%s", paper_id)
        return True

    def merge_and_persist(self, incoming: Iterable[Paper]) -> int:
        """Merge curated papers into the collection and persist the result.

        Papers whose topic no longer exists are dropped, so a run that
        finishes after its topic was deleted cannot bring its papers back.
        Returns the number of papers accepted. Store errors propagate and
        leave the cache unchanged.
        """
        incoming = list(incoming)
        with self._lock:
            accepted = [paper for paper in incoming if paper.topic_id in self._topics]
            dropped = len(incoming) - len(accepted)
            if dropped:
                LOGGER.warning("Dropped %s papers for deleted topics", dropped)
            if not accepted:
                return 0

            merged = merge_papers(self._papers, accepted)
            self._paper_store.put_many(merged)
            self._papers = merged

        LOGGER.info("Merged %s papers; collection size=%s", len(accepted), len(merged))
        return len(accepted)
