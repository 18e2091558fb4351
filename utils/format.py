"""
Formatting helpers for inline error display and model-produced topics.
"""

import json
import re
from typing import Any


_TRAILING_PUNCTUATION = re.compile(r"[，。！？”“\"、,.!?]*$")


def pretty_object(value: Any) -> str:
    """
    Render a value as a fenced JSON block for display inside a message.

    Strings that already hold a fenced JSON block are returned unchanged.
    """
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
        if text == "{}":
            return str(value)
    if text.startswith("```json"):
        return text
    return "\n".join(["```json", text, "```"])


def trim_topic(topic: str) -> str:
    """Strip surrounding whitespace and trailing punctuation/quotes from a topic."""
    return _TRAILING_PUNCTUATION.sub("", topic.strip()).strip()
