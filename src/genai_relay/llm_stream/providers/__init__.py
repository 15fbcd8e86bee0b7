from genai_relay.llm_stream.providers.base_provider import CompletionSource, TokenStream
from genai_relay.llm_stream.providers.factory import create_completion_source
from genai_relay.llm_stream.providers.fake_provider import FakeCompletionSource
from genai_relay.llm_stream.providers.http_provider import HttpCompletionSource, parse_stream_line
from genai_relay.llm_stream.providers.openai_provider import OpenAICompletionSource

__all__ = [
    "CompletionSource",
    "FakeCompletionSource",
    "HttpCompletionSource",
    "OpenAICompletionSource",
    "TokenStream",
    "create_completion_source",
    "parse_stream_line",
]
