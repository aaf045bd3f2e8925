"""
Tolerant decoding of JSON payloads from LLM text.

Models are told to return bare JSON but sometimes wrap it in prose or code
fences. Decoding is two-stage:

1. strict json.loads of the whole text
2. scan for balanced {...} / [...] substrings (string-literal aware, so
   brackets inside quoted values don't confuse the depth count) and return
   the first one that parses to the expected shape

Anything else raises MalformedResponse.
"""

import json
from typing import Any, Iterator, Optional

from errors import MalformedResponse


def _try_load(blob: str) -> Optional[Any]:
    try:
        return json.loads(blob)
    except (ValueError, TypeError):
        return None


def _balanced_spans(text: str, open_ch: str, close_ch: str) -> Iterator[str]:
    """Yield each balanced open_ch...close_ch substring, leftmost first."""
    start = text.find(open_ch)
    while start >= 0:
        depth, in_str, esc = 0, False, False
        end = -1
        for i in range(start, len(text)):
            c = text[i]
            if in_str:
                if esc:
                    esc = False
                elif c == "\\":
                    esc = True
                elif c == '"':
                    in_str = False
                continue
            if c == '"':
                in_str = True
            elif c == open_ch:
                depth += 1
            elif c == close_ch:
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end < 0:
            return
        yield text[start:end + 1]
        start = text.find(open_ch, start + 1)


def _decode(text: str, expected: type, open_ch: str, close_ch: str) -> Any:
    if not isinstance(text, str) or not text.strip():
        raise MalformedResponse("Empty response from LLM", raw_text=text)

    parsed = _try_load(text.strip())
    if isinstance(parsed, expected):
        return parsed

    for candidate in _balanced_spans(text, open_ch, close_ch):
        parsed = _try_load(candidate)
        if isinstance(parsed, expected):
            return parsed

    raise MalformedResponse(
        f"No JSON {expected.__name__} found in LLM response", raw_text=text
    )


def decode_json_object(text: str) -> dict:
    """Decode the first JSON object in `text`."""
    return _decode(text, dict, "{", "}")


def decode_json_array(text: str) -> list:
    """Decode the first JSON array in `text`."""
    return _decode(text, list, "[", "]")
