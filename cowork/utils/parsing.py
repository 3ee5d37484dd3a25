"""
Best-effort decoding of model text into a candidate plan object.

This lives outside the engine on purpose: the validator only ever sees
the decoded object and applies strict schema rules to it.
"""

import json
import re
from typing import Any, Dict, Optional


def _strip_thinking_blocks(text: str) -> str:
    """Remove <think>...</think> blocks that reasoning models may emit."""
    if not text or "<think>" not in text:
        return text or ""
    cleaned = re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL).strip()
    return cleaned.replace("</think>", "").strip() if "</think>" in cleaned else cleaned


def _first_balanced_object(text: str) -> Optional[str]:
    """First ``{...}`` span with balanced braces, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def decode_plan(text: str) -> Optional[Dict[str, Any]]:
    """Extract a JSON object from a model response.

    Tries, in order:
    1. Direct ``json.loads``.
    2. Content inside a markdown code fence.
    3. First balanced ``{...}`` substring.

    <think> blocks are stripped first. Returns ``None`` if nothing decodes
    to a JSON object.
    """
    text = _strip_thinking_blocks((text or "").strip()).strip()
    if not text:
        return None

    # 1. Direct parse
    try:
        result = json.loads(text)
        return result if isinstance(result, dict) else None
    except json.JSONDecodeError:
        pass

    # 2. Markdown code block
    match = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    if match:
        try:
            result = json.loads(match.group(1).strip())
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            pass

    # 3. Bare {...} substring
    candidate = _first_balanced_object(text)
    if candidate:
        try:
            result = json.loads(candidate)
            return result if isinstance(result, dict) else None
        except json.JSONDecodeError:
            pass

    return None
