"""Conversation turn model shared by the context store and the gateway."""

import json
from dataclasses import asdict, dataclass
from enum import Enum


class Role(Enum):
    """Which side of the conversation produced a turn."""

    HUMAN = "human"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ContentPart:
    """One typed fragment of a multimodal turn."""

    type: str  # "text" or "image_url"
    text: str | None = None
    image_url: str | None = None

    @classmethod
    def from_text(cls, text: str) -> "ContentPart":
        return cls(type="text", text=text)

    @classmethod
    def from_image_url(cls, url: str) -> "ContentPart":
        return cls(type="image_url", image_url=url)

    def to_dict(self) -> dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# Plain text, or an ordered sequence of typed parts
TurnContent = str | tuple[ContentPart, ...]


@dataclass(frozen=True)
class ConversationTurn:
    """A single message-equivalent unit of conversation."""

    role: Role
    content: TurnContent

    @property
    def is_structured(self) -> bool:
        return not isinstance(self.content, str)

    @property
    def text(self) -> str:
        """Text fragments of the turn joined by spaces.

        Image parts contribute their reference so a text-only backend still
        sees that an image was shared.
        """
        if isinstance(self.content, str):
            return self.content
        fragments = []
        for part in self.content:
            if part.type == "text":
                fragments.append(part.text or "")
            elif part.type == "image_url":
                fragments.append(part.image_url or "")
        return " ".join(fragments)

    def serialize(self) -> str:
        """Serialized form used for token budgeting."""
        if isinstance(self.content, str):
            return self.content
        return json.dumps([part.to_dict() for part in self.content], ensure_ascii=False)

    def to_dict(self) -> dict:
        """JSON-friendly representation (for debug logging)."""
        if isinstance(self.content, str):
            content: str | list[dict[str, str]] = self.content
        else:
            content = [part.to_dict() for part in self.content]
        return {"role": self.role.value, "content": content}


def human(content: TurnContent) -> ConversationTurn:
    """Shorthand for a human turn."""
    return ConversationTurn(role=Role.HUMAN, content=content)


def assistant(content: TurnContent) -> ConversationTurn:
    """Shorthand for an assistant turn."""
    return ConversationTurn(role=Role.ASSISTANT, content=content)
