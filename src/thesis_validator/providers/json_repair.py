"""
Tolerant JSON extraction from model output.

Local models wrap JSON in prose or code fences, leave trailing commas, use
Python literals or forget to quote keys. These helpers recover the payload
on a best-effort basis and return ``None`` when nothing usable is found.
"""

import ast
import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)


def extract_json_block(text: str) -> str | None:
    """
    Cut the first balanced ``{...}`` or ``[...]`` block out of ``text``.

    Whichever opening bracket appears first wins. Returns the remainder of
    the text from that bracket when the block is never closed, so the
    repair step still gets a chance at it.
    """
    if not text:
        return None
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    open_bracket = text[start]
    close_bracket = "}" if open_bracket == "{" else "]"

    depth = 0
    in_string = False
    escaped = False
    for i, char in enumerate(text[start:], start=start):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == open_bracket:
            depth += 1
        elif char == close_bracket:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def fix_json_string(raw: str) -> str:
    """Apply common repairs to almost-JSON text."""
    if not raw:
        return ""

    result = raw.strip()

    result = re.sub(r"^```(?:json)?\s*", "", result, flags=re.IGNORECASE)
    result = re.sub(r"\s*```$", "", result)

    result = (
        result.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )

    result = re.sub(r",(\s*[}\]])", r"\1", result)

    result = re.sub(r"\bNone\b", "null", result)
    result = re.sub(r"\bTrue\b", "true", result)
    result = re.sub(r"\bFalse\b", "false", result)

    # Bare object keys right after { or ,
    result = re.sub(
        r"([\{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)",
        r'\1"\2"\3',
        result,
    )

    if "'" in result and '"' not in result:
        result = result.replace("'", '"')

    return result


def coerce_to_json_types(obj: Any) -> Any:
    """Turn a ``literal_eval`` result into plain JSON types."""
    if obj is ...:
        return None
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): coerce_to_json_types(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [coerce_to_json_types(v) for v in obj]
    return str(obj)


def parse_json_loose(raw: str) -> dict[str, Any] | list[Any] | None:
    """
    Parse JSON with best-effort repair.

    Args:
        raw: Model output, possibly surrounded by prose.

    Returns:
        A dict or list on success, else None.
    """
    if not raw:
        return None

    block = extract_json_block(raw) or raw
    cleaned = fix_json_string(block)
    try:
        parsed = json.loads(cleaned)
        return parsed if isinstance(parsed, (dict, list)) else None
    except json.JSONDecodeError:
        pass

    # Python literal fallback handles single quotes mixed with double quotes
    for candidate in (block.strip(), cleaned):
        try:
            obj = ast.literal_eval(candidate)
        except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
            continue
        if isinstance(obj, (dict, list, tuple, set)):
            return json.loads(json.dumps(coerce_to_json_types(obj)))
        return None

    logger.debug(f"Could not recover JSON from model output: {raw[:200]}")
    return None


def parse_candidates(raw: str, keys: tuple[str, ...] = ("items", "candidates")) -> list[dict[str, Any]]:
    """
    Parse model output into a list of candidate objects.

    Accepts a bare array, a single object, or an object wrapping the array
    under one of ``keys``. Non-object entries are dropped.
    """
    parsed = parse_json_loose(raw)
    if parsed is None:
        return []
    if isinstance(parsed, dict):
        for key in keys:
            if isinstance(parsed.get(key), list):
                parsed = parsed[key]
                break
        else:
            parsed = [parsed]
    return [item for item in parsed if isinstance(item, dict)]
