"""CSV file stores for topics and papers, keyed by id."""

from __future__ import annotations

import csv
import json
import logging
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, TypeVar

from models import Paper, Topic

CURATOR_DATA_DIR = os.getenv("CURATOR_DATA_DIR", "data")

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TOPIC_COLUMNS = ["id", "title", "search_prompt", "last_updated"]

PAPER_COLUMNS = [
    "id",
    "topic_id",
    "title",
    "authors",            # JSON array
    "published_date",     # YYYY-MM-DD
    "url",
    "summary",
    "abstract",
    "abstract_ja",
    "engagement_score",
    "engagement_reason",
    "impact_badge",
    "citation_count",
    "web_mention_count",
    "image_url",
]


class CsvStore(Generic[T]):
    """Keyed store of one entity kind in a single CSV file.

    Every write rewrites the file through a temp file and ``os.replace`` so a
    bulk put is all-or-nothing on disk.
    """

    def __init__(
        self,
        path: str | Path,
        columns: list[str],
        to_row: Callable[[T], dict[str, Any]],
        from_row: Callable[[dict[str, str]], T],
        key: Callable[[T], str],
    ) -> None:
        self.path = Path(path)
        self.columns = columns
        self._to_row = to_row
        self._from_row = from_row
        self._key = key

    def list_all(self) -> list[T]:
        """Read every record; a missing file is an empty store."""
        return list(self._read().values())

    def put(self, item: T) -> None:
        self.put_many([item])

    def put_many(self, items: Iterable[T]) -> None:
        """Upsert items by key in one atomic file replacement."""
        records = self._read()
        count = 0
        for item in items:
            records[self._key(item)] = item
            count += 1
        self._write(records.values())
        LOGGER.debug("Upserted %s records into %s", count, self.path)

    def delete(self, key: str) -> None:
        self.delete_many([key])

    def delete_many(self, keys: Iterable[str]) -> None:
        records = self._read()
        removed = 0
        for key in keys:
            if records.pop(key, None) is not None:
                removed += 1
        if removed:
            self._write(records.values())
        LOGGER.debug("Deleted %s records from %s", removed, self.path)

    def _read(self) -> dict[str, T]:
        if not self.path.exists():
            return {}

        records: dict[str, T] = {}
        with self.path.open(newline="", encoding="utf-8") as fh:
            reader = csv.DictReader(fh)
            for row in reader:
                item = self._from_row(row)
                records[self._key(item)] = item
        return records

    def _write(self, items: Iterable[T]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(fh, fieldnames=self.columns)
                writer.writeheader()
                for item in items:
                    writer.writerow(self._to_row(item))
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def topic_store(data_dir: str | Path | None = None) -> CsvStore[Topic]:
    return CsvStore(
        Path(data_dir or CURATOR_DATA_DIR) / "topics.csv",
        TOPIC_COLUMNS,
        to_row=topic_to_row,
        from_row=topic_from_row,
        key=lambda topic: topic.id,
    )


def paper_store(data_dir: str | Path | None = None) -> CsvStore[Paper]:
    return CsvStore(
        Path(data_dir or CURATOR_DATA_DIR) / "papers.csv",
        PAPER_COLUMNS,
        to_row=paper_to_row,
        from_row=paper_from_row,
        key=lambda paper: paper.id,
    )


def topic_to_row(topic: Topic) -> dict[str, Any]:
    return {
        "id": topic.id,
        "title": topic.title,
        "search_prompt": topic.search_prompt,
        "last_updated": topic.last_updated or "",
    }


def topic_from_row(row: dict[str, str]) -> Topic:
    return Topic(
        id=row["id"],
        title=row.get("title") or "",
        search_prompt=row.get("search_prompt") or "",
        last_updated=_optional(row.get("last_updated")),
    )


def paper_to_row(paper: Paper) -> dict[str, Any]:
    return {
        "id": paper.id,
        "topic_id": paper.topic_id,
        "title": paper.title,
        "authors": json.dumps(list(paper.authors), ensure_ascii=False),
        "published_date": paper.published_date.isoformat(),
        "url": paper.url,
        "summary": paper.summary,
        "abstract": paper.abstract,
        "abstract_ja": paper.abstract_ja or "",
        "engagement_score": paper.engagement_score,
        "engagement_reason": paper.engagement_reason,
        "impact_badge": paper.impact_badge or "",
        "citation_count": paper.citation_count or "",
        "web_mention_count": paper.web_mention_count or "",
        "image_url": paper.image_url or "",
    }


def paper_from_row(row: dict[str, str]) -> Paper:
    return Paper(
        id=row["id"],
        topic_id=row["topic_id"],
        title=row.get("title") or "",
        authors=tuple(_load_authors(row.get("authors"))),
        published_date=date.fromisoformat(row["published_date"]),
        url=row.get("url") or "",
        summary=row.get("summary") or "",
        abstract=row.get("abstract") or "",
        abstract_ja=_optional(row.get("abstract_ja")),
        engagement_score=int(row.get("engagement_score") or 0),
        engagement_reason=row.get("engagement_reason") or "",
        impact_badge=_optional(row.get("impact_badge")),
        citation_count=_optional(row.get("citation_count")),
        web_mention_count=_optional(row.get("web_mention_count")),
        image_url=_optional(row.get("image_url")),
    )


def _load_authors(raw: str | None) -> list[str]:
    if not raw:
        return []
    value = json.loads(raw)
    if not isinstance(value, list):
        raise ValueError(f"authors cell is not a JSON array: {raw!r}")
    return [str(author) for author in value]


def _optional(value: str | None) -> str | None:
    return value if value else None
