"""
Prompt templates used by the chat store, memory compactor and topic summarizer.
"""

from datetime import datetime
from typing import Optional


DEFAULT_TOPIC = "New Conversation"

BOT_HELLO = "Hello! How can I assist you today?"

# ----------------------------------------------
# Memory / Topic Prompts
# ----------------------------------------------
TOPIC_PROMPT = (
    "Please generate a four to five word title summarizing our conversation "
    "without any lead-in, punctuation, quotation marks, periods, symbols, or "
    "additional text. Remove enclosing quotation marks."
)

SUMMARIZE_PROMPT = (
    "Summarize the discussion briefly in 200 characters or less to use as a "
    "prompt for future context."
)


def history_prompt(memory_prompt: str) -> str:
    """Wrap the running memory prompt for use as a system message."""
    return f"This is a summary of the chat history as a recap: {memory_prompt}"


# ----------------------------------------------
# System Instruction
# ----------------------------------------------
def system_instruction(model: str, context: str = "", now: Optional[datetime] = None) -> str:
    """
    Build the system instruction sent ahead of a user turn.

    Args:
        model: Model identifier reported to the assistant
        context: Retrieved reference text, spliced in when non-empty
        now: Timestamp to report, defaults to the current local time

    Returns:
        The instruction text
    """
    now = now or datetime.now()
    lines = [
        "You are a helpful, concise assistant.",
    ]
    if context:
        lines.append(f"Answer using the following context where relevant:\n{context}")
    lines.append(
        f"You are powered by the {model} model. Current time: {now.strftime('%Y/%m/%d %H:%M:%S')}."
    )
    return "\n\n".join(lines)
