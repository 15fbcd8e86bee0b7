"""
Completion source factory.

Selects the upstream transport from ``UPSTREAM_CLIENT``.
"""

from genai_relay.core.config.settings import Settings
from genai_relay.core.exceptions import ConfigurationError
from genai_relay.llm_stream.providers.base_provider import CompletionSource
from genai_relay.llm_stream.providers.fake_provider import FakeCompletionSource
from genai_relay.llm_stream.providers.http_provider import HttpCompletionSource
from genai_relay.llm_stream.providers.openai_provider import OpenAICompletionSource


def create_completion_source(settings: Settings) -> CompletionSource:
    upstream = settings.upstream

    if upstream.UPSTREAM_CLIENT == "http":
        return HttpCompletionSource(
            base_url=upstream.BASE_URL,
            completions_path=upstream.UPSTREAM_COMPLETIONS_PATH,
            api_key=upstream.UPSTREAM_API_KEY,
            connect_timeout=upstream.UPSTREAM_CONNECT_TIMEOUT,
            read_timeout=upstream.UPSTREAM_READ_TIMEOUT,
        )
    if upstream.UPSTREAM_CLIENT == "openai":
        return OpenAICompletionSource(
            base_url=upstream.BASE_URL,
            api_key=upstream.UPSTREAM_API_KEY,
            timeout=upstream.UPSTREAM_READ_TIMEOUT,
        )
    if upstream.UPSTREAM_CLIENT == "fake":
        return FakeCompletionSource(token_delay=0.05)

    raise ConfigurationError(
        f"Unknown upstream client: {upstream.UPSTREAM_CLIENT}",
        details={"allowed": ["http", "openai", "fake"]},
    )
