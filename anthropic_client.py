"""Thin wrapper around the Anthropic Messages API for structured extraction."""

from __future__ import annotations

import logging
import os
from typing import Any

import anthropic

LOGGER = logging.getLogger(__name__)

_TOOL_NAME = "record_papers"


def claude_extract(prompt: str, schema: dict[str, Any], max_tokens: int = 8192) -> Any | None:
    """Call Claude with one forced tool and return the tool input.

    The tool's input_schema is the extraction schema, so the reply is a
    structured object rather than free text. Returns None when Claude did not
    produce a tool call.
    """
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise RuntimeError("ANTHROPIC_API_KEY environment variable is required")

    claude_model = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5")
    client = anthropic.Anthropic(api_key=api_key)

    LOGGER.debug("Calling Claude model=%s max_tokens=%s", claude_model, max_tokens)
    response = client.messages.create(
        model=claude_model,
        max_tokens=max_tokens,
        system="You are a data extraction specialist. Record every paper with the provided tool.",
        tools=[
            {
                "name": _TOOL_NAME,
                "description": "Record the curated research papers extracted from the report.",
                "input_schema": schema,
            }
        ],
        tool_choice={"type": "tool", "name": _TOOL_NAME},
        messages=[{"role": "user", "content": prompt}],
    )

    for block in response.content:
        if getattr(block, "type", None) == "tool_use" and getattr(block, "name", None) == _TOOL_NAME:
            return block.input

    LOGGER.warning("Claude response contained no %s tool call", _TOOL_NAME)
    return None
