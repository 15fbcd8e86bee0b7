from genai_relay.llm_stream.models.conversation import (
    ChatMessage,
    ChatRequest,
    Conversation,
    Message,
    ModelConfig,
    TokenEvent,
    estimate_tokens,
)
from genai_relay.llm_stream.models.outcome import CancellationSignal, RequestMetrics, RequestOutcome

__all__ = [
    "CancellationSignal",
    "ChatMessage",
    "ChatRequest",
    "Conversation",
    "Message",
    "ModelConfig",
    "RequestMetrics",
    "RequestOutcome",
    "TokenEvent",
    "estimate_tokens",
]
