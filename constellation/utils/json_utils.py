"""
Utilities for cleaning LLM responses.
"""

import json
import re
from typing import Any

_FENCE_OPEN = re.compile(r'^```[a-zA-Z]*[ \t]*\n?')
_FENCE_CLOSE = re.compile(r'\n?```\s*$')


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def extract_json(response: str) -> Any:
    """Decode the first JSON object or array found in an LLM response.

    Tries the fence-stripped text first, then falls back to the outermost
    braces or brackets so that chatter around the payload is ignored.

    Raises:
        json.JSONDecodeError: If no decodable JSON is present
    """
    cleaned = clean_json_response(response)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for open_char, close_char in (('{', '}'), ('[', ']')):
        start = cleaned.find(open_char)
        end = cleaned.rfind(close_char)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                continue

    raise json.JSONDecodeError('No JSON payload found in response', cleaned, 0)


def sanitize_markdown(markdown: str) -> str:
    """Strip a wrapping ```markdown (or bare ```) fence from generated markdown.

    Fences inside the document are left alone; only a fence that opens the
    text and one that closes it are removed.
    """
    text = markdown.strip()
    if text.startswith('```'):
        text = _FENCE_OPEN.sub('', text, count=1)
        text = _FENCE_CLOSE.sub('', text, count=1)
    return text.strip()
