"""
Length metric used by every compaction threshold.

Thresholds (history budget, compression threshold, max_tokens cut-off, topic
minimum) are measured with a LengthMetric. The default counts characters;
a tokenizer-backed callable can be passed instead without touching the
compaction algorithm.
"""

from typing import Callable, Iterable

from schemas.chat_schema import ChatMessage


LengthMetric = Callable[[str], int]


def char_length(text: str) -> int:
    return len(text)


def count_length(messages: Iterable[ChatMessage], metric: LengthMetric = char_length) -> int:
    return sum(metric(message.content) for message in messages)
