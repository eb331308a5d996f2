"""Conversation transcript: role-tagged messages in append-only order."""

from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel

Role = Literal["user", "assistant", "system"]

SUMMARY_MARKER = "[CONVERSATION SUMMARY]"


class Message(BaseModel):
    """One role-tagged text unit of the transcript."""

    role: Role
    content: str
    total_tokens: Optional[int] = None
    duration_ms: Optional[float] = None

    @property
    def is_summary(self) -> bool:
        return self.role == "system" and self.content.startswith(SUMMARY_MARKER)

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape sent to chat-completions backends."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, **kwargs: Any) -> "Message":
        return cls(role="assistant", content=content, **kwargs)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)


class Conversation:
    """
    Ordered transcript of one chat session.

    Messages are only ever appended. ``rollback_to`` exists to discard the
    tentative tail of a turn that failed, and ``apply_summary`` swaps the
    compression summary while leaving every other message in place.
    """

    def __init__(self, messages: Optional[Iterable[Message]] = None):
        self._messages: List[Message] = list(messages or [])

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        self._messages.extend(messages)

    def rollback_to(self, length: int) -> None:
        """Drop every message appended after the transcript had ``length`` entries."""
        if length < 0 or length > len(self._messages):
            raise ValueError(f"Cannot roll back to {length}; transcript has {len(self._messages)} messages")
        del self._messages[length:]

    @property
    def assistant_response_count(self) -> int:
        return sum(1 for m in self._messages if m.role == "assistant")

    def apply_summary(self, summary: Message) -> None:
        self._messages = [m for m in self._messages if not m.is_summary]
        self._messages.append(summary)

    def clear(self) -> None:
        self._messages.clear()
