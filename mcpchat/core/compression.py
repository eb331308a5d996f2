"""
Conversation history compression.

After enough exchanges the older part of the transcript is summarised by
the model into one ``system`` message tagged with ``SUMMARY_MARKER``. From
then on only the summary and the two most recent messages are sent.
"""

import logging
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

from mcpchat.core.conversation import SUMMARY_MARKER, Message

if TYPE_CHECKING:
    from mcpchat.providers.base import Provider

logger = logging.getLogger(__name__)

COMPRESSION_TEMPERATURE = 0.3
KEEP_RECENT = 2

COMPRESSION_SYSTEM_PROMPT = """You are a conversation summarizer. Your task is to create a concise summary of the conversation history while preserving all critical information.

RULES:
- Preserve key facts, decisions, and context
- Maintain chronological order of events
- Use clear, structured format
- If a previous summary exists, integrate new messages with it
- Output ONLY the summary text, no metadata or markers"""


class CompressionError(Exception):
    """Raised when the transcript cannot be compressed."""

    pass


def messages_for_api(messages: Sequence[Message]) -> List[Message]:
    """
    Select what is actually sent to the model.

    Without a summary every message goes out. With one, the summary is
    followed by the last two non-summary messages, in transcript order.
    """
    summary = next((m for m in messages if m.is_summary), None)
    if summary is None:
        return list(messages)
    rest = [m for m in messages if not m.is_summary]
    return [summary] + rest[-KEEP_RECENT:]


def _split(messages: Sequence[Message]) -> Tuple[Optional[str], List[Message]]:
    summaries = [m for m in messages if m.is_summary]
    previous = None
    if summaries:
        previous = summaries[-1].content[len(SUMMARY_MARKER):].lstrip("\n")

    rest = [m for m in messages if not m.is_summary]
    to_compress = rest[:-KEEP_RECENT]
    if not to_compress:
        raise CompressionError("Insufficient messages for compression")
    return previous, to_compress


def _numbered(messages: Sequence[Message]) -> str:
    return "\n".join(f"{i}. [{m.role}]: {m.content}" for i, m in enumerate(messages, 1))


def build_compression_prompt(previous_summary: Optional[str], messages: Sequence[Message]) -> List[Message]:
    if previous_summary:
        content = (
            f"Previous conversation summary:\n{previous_summary}\n\n"
            f"New messages to integrate:\n{_numbered(messages)}\n\n"
            "Please create an updated summary that integrates the previous "
            "summary with these new messages."
        )
    else:
        content = (
            f"Conversation to summarize:\n{_numbered(messages)}\n\n"
            "Please create a concise summary of this conversation."
        )
    return [Message.user(content)]


async def compress_messages(messages: Sequence[Message], provider: "Provider") -> Message:
    """
    Summarise everything but the two most recent messages.

    Returns the new summary message; the caller installs it with
    ``Conversation.apply_summary``.

    Raises:
        CompressionError: Nothing to compress, or the model call failed.
    """
    previous, to_compress = _split(messages)
    prompt = build_compression_prompt(previous, to_compress)

    try:
        response = await provider.send_message(
            prompt,
            system_prompt=COMPRESSION_SYSTEM_PROMPT,
            temperature=COMPRESSION_TEMPERATURE,
        )
    except Exception as e:
        logger.error("Compression failed: %s", e)
        raise CompressionError(f"Failed to compress conversation: {e}") from e

    logger.info("Compressed %d messages into summary", len(to_compress))
    return Message.system(f"{SUMMARY_MARKER}\n{response.content}")
