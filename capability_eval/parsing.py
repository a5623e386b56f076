"""Lenient extraction of JSON arrays from free-form agent replies.

Agents wrap requested JSON in prose or markdown fences often enough that
discovery, scenario generation and judging all share one forgiving parse:
take the first top-level JSON array in the text, or give up with ``None``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import jsonschema

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()


def extract_json_array(raw: str) -> list[Any] | None:
    """Return the first JSON array embedded in ``raw``, or None.

    Decoding starts at the first ``[``. If the array there is followed by
    trailing prose it is still returned; if it does not decode, the span up
    to the last ``]`` is tried before giving up. Never raises.
    """
    start = raw.find("[")
    if start < 0:
        return None

    try:
        value, _ = _decoder.raw_decode(raw, start)
    except json.JSONDecodeError:
        end = raw.rfind("]")
        if end <= start:
            return None
        try:
            value = json.loads(raw[start : end + 1])
        except json.JSONDecodeError:
            logger.debug("No decodable JSON array in %d chars of output", len(raw))
            return None

    if not isinstance(value, list):
        return None
    return value


def valid_items(items: list[Any], schema: dict[str, Any]) -> list[dict[str, Any]]:
    """Keep only the items that validate against ``schema``."""
    validator = jsonschema.Draft202012Validator(schema)
    kept: list[dict[str, Any]] = []
    for item in items:
        if validator.is_valid(item):
            kept.append(item)
        else:
            logger.debug("Dropping malformed item: %r", item)
    return kept
