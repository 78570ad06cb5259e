"""Chronological timeline view over curated papers."""

from __future__ import annotations

from typing import Iterable

from models import DayGroup, Paper

_RULE = "-" * 72


def project(papers: Iterable[Paper], topic_id: str) -> list[DayGroup]:
    """Group one topic's papers by date, newest day first, best score first."""
    selected = [paper for paper in papers if paper.topic_id == topic_id]
    selected.sort(key=lambda p: (p.published_date, p.engagement_score), reverse=True)

    groups: list[DayGroup] = []
    for paper in selected:
        if groups and groups[-1].date == paper.published_date:
            groups[-1].papers.append(paper)
        else:
            groups.append(DayGroup(date=paper.published_date, papers=[paper]))
    return groups


def render_timeline(groups: list[DayGroup], abstracts: bool = False) -> str:
    """Plain-text rendering of a projected timeline for the CLI."""
    if not groups:
        return "No papers curated yet. Run `refresh` to start the feed."

    lines: list[str] = []
    for group in groups:
        count = len(group.papers)
        lines.append(_RULE)
        lines.append(f"{group.date.isoformat()}  ({count} recommendation{'s' if count != 1 else ''})")
        lines.append(_RULE)
        for paper in group.papers:
            lines.extend(_render_paper(paper, abstracts))
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _render_paper(paper: Paper, abstracts: bool = False) -> list[str]:
    authors = ", ".join(paper.authors[:3])
    if len(paper.authors) > 3:
        authors += " et al."

    lines = [
        f"[{paper.engagement_score:>3}] {paper.impact_badge or ''}  {paper.title}".rstrip(),
        f"      {authors}" if authors else "",
        f"      {paper.url}",
    ]
    if paper.summary:
        lines.append(f"      {paper.summary}")
    if abstracts:
        lines.append(f"      Abstract: {paper.abstract}")
        if paper.abstract_ja:
            lines.append(f"      要旨: {paper.abstract_ja}")
    lines.append(
        f"      citations: {paper.citation_count or '0'} | web: {paper.web_mention_count or 'N/A'}"
        + (f" | {paper.engagement_reason}" if paper.engagement_reason else "")
    )
    return [line for line in lines if line]
