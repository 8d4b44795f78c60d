"""
Utilities for cleaning LLM responses.
"""

import json
from typing import Any


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned string
    """
    response = response.strip()

    # Remove ```json / ```text and ``` markers
    if response.startswith('```'):
        response = response[3:]
        first_line, _, rest = response.partition('\n')
        if rest and first_line.strip().isalpha():
            response = rest

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def clean_text_response(response: str, max_chars: int = 600) -> str:
    """Strip code fences and wrapping quotes from a short free-text completion.

    Args:
        response: Raw LLM response
        max_chars: Hard cap on the returned length

    Returns:
        Cleaned single-paragraph text, possibly empty
    """
    text = clean_json_response(response or '')
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
        text = text[1:-1].strip()
    text = ' '.join(text.split())
    if len(text) > max_chars:
        text = text[:max_chars].rsplit(' ', 1)[0].rstrip(',;:') + '…'
    return text


def dumps_compact(value: Any) -> str:
    """Serialize a value for logs and event payloads."""
    return json.dumps(value, separators=(',', ':'), ensure_ascii=False, default=str)
