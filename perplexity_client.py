"""Perplexity API client for the web search stage."""

from __future__ import annotations

import logging
import os

import requests

PERPLEXITY_API_URL = "https://api.perplexity.ai/chat/completions"
PERPLEXITY_MODEL = os.getenv("PERPLEXITY_MODEL", "sonar-pro")
PERPLEXITY_TEMPERATURE = float(os.getenv("PERPLEXITY_TEMPERATURE", "0.1"))
REQUEST_TIMEOUT_SECONDS = 90
MAX_ATTEMPTS = 2

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a senior research assistant with live web search.
You report on recent research papers in plain text. Never invent papers,
authors, URLs or numbers; say "unknown" when a value cannot be found."""

_SEARCH_TEMPLATE = """Goal: Find 3-5 LATEST and MOST IMPACTFUL research papers about: "{query}".

EXECUTION STEPS:
1. Search: Find high-quality papers (arXiv, NeurIPS, CVPR, Nature, etc.) published recently.
2. Web presence check (viral/buzz):
   - For each paper found, search the web for the exact title in double quotes.
   - Report the result count if it is visible (e.g. "About 12,400 results").
   - Otherwise count how many results come from non-academic sources
     (blogs, X/Twitter, Reddit, news, GitHub).
   - Report the "Web Buzz" as either the hit count (e.g. "12,400 results") or the
     source count (e.g. "5+ news sources", "Discussed on X/Reddit", "Academic only").

OUTPUT FORMAT (text report), for each paper:
- Title
- Authors
- Published Date
- URL
- Citation Count: (e.g. "124" or "0")
- Web Buzz: (e.g. "12,000 hits", "Viral on X", "8+ blog posts", "Academic only")
- Abstract/Summary in English

State "Academic only" explicitly if no buzz is found."""


def build_search_prompt(query: str) -> str:
    """Render the user-facing search instructions for one topic prompt."""
    return _SEARCH_TEMPLATE.format(query=query.strip())


def search_papers(query: str) -> str:
    """Run a web-grounded search for recent papers and return the text report."""
    api_key = os.getenv("PERPLEXITY_API_KEY")
    if not api_key:
        raise RuntimeError("PERPLEXITY_API_KEY environment variable is required")

    LOGGER.info("Searching papers with Perplexity: %s", query)
    last_error: Exception | None = None

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            content = _call_perplexity(api_key=api_key, query=query)
            if not content.strip():
                raise RuntimeError("Perplexity returned an empty search report")
            LOGGER.info("Perplexity search succeeded (%s chars)", len(content))
            return content
        except Exception as exc:  # broad to preserve graceful retry path
            last_error = exc
            LOGGER.warning(
                "Perplexity search failed on attempt %s/%s: %s",
                attempt,
                MAX_ATTEMPTS,
                exc,
            )

    raise RuntimeError(f"Perplexity search failed: {last_error}")


def _call_perplexity(api_key: str, query: str) -> str:
    payload = {
        "model": PERPLEXITY_MODEL,
        "temperature": PERPLEXITY_TEMPERATURE,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_search_prompt(query)},
        ],
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    response = requests.post(
        PERPLEXITY_API_URL,
        headers=headers,
        json=payload,
        timeout=REQUEST_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    body = response.json()

    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise RuntimeError(f"Unexpected Perplexity response shape: {body}") from exc

    return _append_citations(content or "", body.get("citations"))


def _append_citations(content: str, citations: object) -> str:
    """Append the source links Perplexity attaches outside the message body."""
    if not isinstance(citations, list):
        return content
    links = [c for c in citations if isinstance(c, str) and c.strip()]
    if not links:
        return content
    numbered = "\n".join(f"[{index}] {link}" for index, link in enumerate(links, start=1))
    return f"{content}\n\nSources:\n{numbered}"
