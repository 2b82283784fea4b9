"""
JSON recovery helpers for model replies.

Model replies are supposed to be JSON but regularly arrive fenced in markdown,
surrounded by prose, split into several fragments, truncated, or with an
extra bracket layer between object fragments. ``recover`` applies a layered
strategy and returns the best-effort value, or ``None`` when nothing usable
can be found. It never raises.
"""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```[ \t]*[A-Za-z0-9_+-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)

_CLOSERS = {"{": "}", "[": "]"}

# "}], [{" between object fragments: one array split in two
_BRACKET_LAYER = re.compile(r"\}\s*\]\s*,\s*\[\s*\{")


def _loads(text: str) -> tuple[bool, Any]:
    """Parse text, reporting success separately so a literal ``null`` is distinguishable."""
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return False, None


def strip_code_fences(text: str) -> list[str]:
    """Return the bodies of all markdown code fences in text (empty if unfenced)."""
    return [body.strip() for body in _FENCE.findall(text)]


def repair_json_structure(json_str: str) -> str:
    """
    Rewrite common structural malformations produced by the model.

    Handles a JSON document delivered as a quoted string, a spurious bracket
    layer between object fragments (``}], [{`` where ``}, {`` was meant), a
    doubled trailing ``]]``, missing commas between fragments on separate
    lines, and trailing commas.
    """
    repaired = json_str.strip()

    # Whole document delivered as an escaped string literal
    if len(repaired) >= 2 and repaired.startswith('"') and repaired.endswith('"'):
        repaired = repaired[1:-1].replace('\\"', '"')

    # }], [{  ->  }, {
    repaired = _BRACKET_LAYER.sub("}, {", repaired)

    # }]]  ->  }]
    repaired = re.sub(r"\}\s*\]\s*\]", "}]", repaired)

    # Missing commas between fragments on separate lines
    repaired = re.sub(r"\}\s*\n\s*\{", "},\n{", repaired)
    repaired = re.sub(r"\]\s*\n\s*\[", "],\n[", repaired)

    # Trailing commas
    repaired = re.sub(r",\s*([}\]])", r"\1", repaired)

    return repaired


def _parse_repaired(text: str) -> tuple[bool, Any]:
    repaired = repair_json_structure(text)
    ok, value = _loads(repaired)
    if ok:
        return ok, value

    # A bare run of objects "{..}, {..}" is an array missing its brackets
    if repaired.startswith("{") and repaired.endswith("}"):
        return _loads(f"[{repaired}]")
    return False, None


def _close_truncated(fragment: str, stack: list[str], in_string: bool) -> str:
    """Close an unterminated string and any open brackets at the end of fragment."""
    closed = fragment
    if in_string:
        closed += '"'
    closed = re.sub(r"[,:\s]+$", "", closed)
    return closed + "".join(_CLOSERS[opener] for opener in reversed(stack))


def scan_balanced_json(text: str) -> tuple[bool, Any]:
    """
    Locate the first top-level JSON object or array inside text and parse it.

    Scans from the first ``{`` or ``[`` while tracking bracket nesting and
    string-literal state (honouring backslash escapes) until the matching
    closer. If the text ends first, the open string and brackets are closed.
    """
    starts = [idx for idx in (text.find("{"), text.find("[")) if idx != -1]
    if not starts:
        return False, None
    start = min(starts)

    stack: list[str] = []
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]"):
            if not stack or _CLOSERS[stack[-1]] != ch:
                # Mismatched closer; let the repair pass have a go at the rest
                return _parse_repaired(text[start:])
            stack.pop()
            if not stack:
                candidate = text[start:i + 1]
                ok, value = _loads(candidate)
                if ok:
                    return ok, value
                return _parse_repaired(candidate)

    logger.debug(f"JSON fragment is truncated; closing {len(stack)} open bracket(s)")
    return _loads(_close_truncated(text[start:], stack, in_string))


def recover(text: Any) -> Optional[Any]:
    """
    Recover a JSON value from free model text.

    Order: direct parse, fence stripping, structural repair, bracket-matching
    scan. Returns ``None`` when no strategy yields a value; callers treat that
    as "no usable structured data".

    Args:
        text: Model reply text

    Returns:
        Parsed JSON value, or None
    """
    if not isinstance(text, str):
        return None
    stripped = text.strip()
    if not stripped:
        return None

    ok, value = _loads(stripped)
    if ok:
        return value

    bodies = strip_code_fences(stripped)
    if bodies:
        parsed = [_loads(body) for body in bodies]
        if all(ok for ok, _ in parsed):
            if len(parsed) == 1:
                return parsed[0][1]
            values: list[Any] = []
            for _, fenced_value in parsed:
                if isinstance(fenced_value, list):
                    values.extend(fenced_value)
                else:
                    values.append(fenced_value)
            return values
        # Parse what is inside the fences with the slower strategies below
        stripped = "\n".join(bodies)
        ok, value = _loads(stripped)
        if ok:
            return value

    ok, value = _parse_repaired(stripped)
    if ok:
        logger.debug("Recovered JSON after structural repair")
        return value

    if _BRACKET_LAYER.search(stripped):
        ok, value = scan_balanced_json(repair_json_structure(stripped))
        if ok:
            logger.debug("Recovered JSON by bracket scan after collapsing split arrays")
            return value

    ok, value = scan_balanced_json(stripped)
    if ok:
        logger.debug("Recovered JSON by bracket scan")
        return value

    logger.debug(f"No JSON recoverable from reply text: {stripped[:120]}")
    return None
