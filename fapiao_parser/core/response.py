"""Text extraction from model response envelopes.

The envelope shape is owned by the upstream service and changes between API
versions (``output.choices[].message.content[]``, legacy ``choices[]``, flat
``text``/``content`` fields). Rather than hard-coding one path, the envelope is
walked and every string under a content-bearing key is collected in order.
"""
import json
from typing import Any, List

# Keys whose values carry generated content, in priority order
CONTENT_KEYS = ("text", "content", "data", "parts", "items")


def _walk(node: Any, out: List[str]) -> None:
    if isinstance(node, str):
        if node.strip():
            out.append(node)
        return

    if isinstance(node, list):
        for element in node:
            _walk(element, out)
        return

    if not isinstance(node, dict):
        return

    known = [key for key in CONTENT_KEYS if key in node]
    if known:
        for key in known:
            _walk(node[key], out)
        return

    # No content key here: descend into containers only, so metadata strings
    # such as request ids, roles and finish reasons are not mistaken for text
    for value in node.values():
        if isinstance(value, (dict, list)):
            _walk(value, out)


def extract_text(envelope: Any) -> List[str]:
    """
    Collect the generated text fragments of a response envelope.

    Args:
        envelope: Decoded response body, or the raw body string

    Returns:
        Text fragments in encounter order; empty when nothing textual is found
    """
    if isinstance(envelope, (bytes, bytearray)):
        envelope = envelope.decode("utf-8", errors="replace")

    if isinstance(envelope, str):
        try:
            decoded = json.loads(envelope)
        except (json.JSONDecodeError, ValueError):
            return [envelope] if envelope.strip() else []
        if not isinstance(decoded, (dict, list)):
            return [envelope] if envelope.strip() else []
        envelope = decoded

    fragments: List[str] = []
    _walk(envelope, fragments)
    return fragments
