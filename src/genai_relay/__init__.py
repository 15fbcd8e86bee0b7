"""GenAI streaming relay: relays chat-completion token streams with metrics and tracing."""

__version__ = "1.0.0"
