from genai_relay.llm_stream.services.stream_relay import StreamRelay

__all__ = ["StreamRelay"]
