"""OpenAI GPT-based client for structured paper extraction."""

from __future__ import annotations

import json
import logging
import os
from json import JSONDecodeError
from typing import Any

from openai import OpenAI

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.1"))
MAX_ATTEMPTS = 2

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a data extraction specialist.
You turn research reports into structured records.
Respond only with JSON matching the supplied schema. No prose, no markdown."""


def extract_structured(prompt: str, schema: dict[str, Any], schema_name: str = "curated_papers") -> Any | None:
    """Ask OpenAI for a response constrained to a strict JSON schema.

    Returns the decoded JSON value, or None when the model produced no usable
    payload (empty content, refusal, undecodable JSON). API errors are retried
    once and then raised.
    """
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is required")

    client = OpenAI(api_key=api_key)
    last_error: Exception | None = None

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            content = _call_openai(client=client, prompt=prompt, schema=schema, schema_name=schema_name)
            break
        except Exception as exc:
            last_error = exc
            LOGGER.warning(
                "OpenAI extraction failed on attempt %s/%s: %s",
                attempt,
                MAX_ATTEMPTS,
                exc,
            )
    else:
        raise RuntimeError(f"OpenAI extraction failed: {last_error}")

    if not content:
        LOGGER.warning("OpenAI returned an empty extraction response")
        return None

    try:
        return json.loads(content)
    except JSONDecodeError as exc:
        LOGGER.warning("OpenAI extraction response is not valid JSON: %s", exc)
        return None


def _call_openai(client: OpenAI, prompt: str, schema: dict[str, Any], schema_name: str) -> str | None:
    response = client.chat.completions.create(
        model=OPENAI_MODEL,
        temperature=OPENAI_TEMPERATURE,
        response_format={
            "type": "json_schema",
            "json_schema": {"name": schema_name, "schema": schema, "strict": True},
        },
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
    )

    message = response.choices[0].message
    refusal = getattr(message, "refusal", None)
    if isinstance(refusal, str) and refusal:
        LOGGER.warning("OpenAI refused the extraction request: %s", refusal)
        return None
    return message.content
