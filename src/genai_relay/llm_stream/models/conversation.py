"""
Conversation Models

Inbound request bodies are parsed into pydantic models; the relay then
builds an immutable ``Conversation`` from them and sends its wire form
upstream.
"""

from dataclasses import dataclass

from pydantic import BaseModel, Field, ValidationError

from genai_relay.core.config.constants import (
    CHARS_PER_TOKEN,
    RECOGNIZED_ROLES,
    ROLE_SYSTEM,
    ROLE_USER,
)
from genai_relay.core.exceptions import InvalidRequestError
from genai_relay.core.logging import get_logger

logger = get_logger(__name__)


def estimate_tokens(text: str) -> int:
    """
    Approximate the token count of ``text`` as one token per four characters.

    This is a lossy heuristic for trending, not a tokenizer.
    """
    return len(text) // CHARS_PER_TOKEN


class ChatMessage(BaseModel):
    """One ``{role, content}`` entry of the inbound ``messages`` list."""

    role: str
    content: str


class ChatRequest(BaseModel):
    """
    Body of ``POST /chat``.

    Either field may be omitted: ``messages`` carries prior turns, ``message``
    is appended as the final user turn.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    messages: list[ChatMessage] = Field(default_factory=list, description="Prior conversation turns")
    message: str | None = Field(default=None, description="Final user turn")
    format: str | None = Field(default=None, description="Formatting preference, e.g. 'markdown'")

    @classmethod
    def parse_body(cls, body: bytes | str) -> "ChatRequest":
        """
        Parse a raw JSON body.

        Raises:
            InvalidRequestError: body is not JSON or has the wrong shape
        """
        try:
            return cls.model_validate_json(body)
        except ValidationError as exc:
            raise InvalidRequestError(
                "Invalid request body",
                details={"errors": exc.error_count()},
            ) from exc


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Conversation:
    """
    Ordered, immutable sequence of messages with recognized roles.

    Built once per request from a ``ChatRequest`` and owned by that request.
    """

    messages: tuple[Message, ...]

    @classmethod
    def from_request(cls, request: ChatRequest) -> "Conversation":
        """
        Build a conversation, dropping entries with unrecognized roles and
        appending ``request.message`` as the final user turn when present.
        """
        messages = []
        for entry in request.messages:
            if entry.role not in RECOGNIZED_ROLES:
                logger.debug("Dropping message with unrecognized role", role=entry.role)
                continue
            messages.append(Message(role=entry.role, content=entry.content))

        if request.message:
            messages.append(Message(role=ROLE_USER, content=request.message))

        return cls(messages=tuple(messages))

    def with_system_prompt(self, prompt: str) -> "Conversation":
        return Conversation(messages=(Message(role=ROLE_SYSTEM, content=prompt), *self.messages))

    @property
    def last_user_text(self) -> str:
        for message in reversed(self.messages):
            if message.role == ROLE_USER:
                return message.content
        return ""

    def to_wire(self) -> list[dict[str, str]]:
        return [message.to_wire() for message in self.messages]

    def estimate_tokens(self) -> int:
        return estimate_tokens("".join(message.content for message in self.messages))

    def __len__(self) -> int:
        return len(self.messages)


@dataclass(frozen=True)
class ModelConfig:
    """Upstream generation parameters for one request."""

    model: str
    temperature: float = 0.2
    max_tokens: int = 500
    stream: bool = True


@dataclass(frozen=True)
class TokenEvent:
    """One incremental delta of generated text from the upstream."""

    content: str
    finish_reason: str | None = None
