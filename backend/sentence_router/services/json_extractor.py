"""
JSON Extractor - turns raw model prose into a parsed JSON value.

Handles common LLM quirks:
- Prose before/after the JSON ("Here's the output: {...} hope this helps")
- Markdown code fences around the JSON
- Trailing commas before a closing } or ] (single-line and multi-line)

Everything here is pure: no I/O, no model calls.
"""

import json
import logging
import re
from typing import Any

from sentence_router.services.pipeline_errors import JSONParseError, NoJsonFoundError

logger = logging.getLogger(__name__)

# First "{" through the last "}" (greedy, spans newlines)
_JSON_SPAN = re.compile(r"\{[\s\S]*\}")


def find_json_span(raw_text: str) -> str:
    """Return the greedy {...} span. Raises NoJsonFoundError if there is none."""
    match = _JSON_SPAN.search(raw_text)
    if match is None:
        logger.error(f"No JSON found in response: {raw_text}")
        raise NoJsonFoundError(raw_text)
    return match.group(0)


def remove_trailing_commas(json_text: str) -> str:
    """
    Drop commas that directly precede a closing brace or bracket.

    Whitespace between the comma and the closer is kept, so multi-line
    layouts survive. Commas inside string literals are never touched.
    Re-applying to the output changes nothing.
    """
    out = []
    in_string = False
    escaped = False
    length = len(json_text)

    for i, ch in enumerate(json_text):
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < length and json_text[j].isspace():
                j += 1
            if j < length and json_text[j] in "}]":
                continue
        out.append(ch)

    return "".join(out)


def sanitize_json(json_text: str) -> str:
    """Sanitation applied to a candidate span before parsing."""
    return remove_trailing_commas(json_text)


def extract_json(raw_text: str) -> Any:
    """
    Locate, sanitize and parse the JSON object embedded in model output.

    Raises:
        NoJsonFoundError: No {...} span in the text
        JSONParseError: The span is not valid JSON after sanitation
    """
    candidate = sanitize_json(find_json_span(raw_text))
    logger.debug(f"Cleaned JSON string:\n{candidate}")

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON: {e}\nRaw JSON string: {candidate}")
        raise JSONParseError(str(e), candidate) from e

    return parsed
