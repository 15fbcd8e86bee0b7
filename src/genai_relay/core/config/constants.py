"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the streaming relay.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for labels that end up in metrics and traces
- Type-safe enums for terminal states
- Easy to update and track changes

Author: System Architect
Date: 2025-12-05
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for logging)
# ============================================================================


class Stage(str, Enum):
    """
    Request processing stages.

    Format: {SEQUENCE}_{DESCRIPTIVE_NAME}

    Each stage represents a major phase in the lifetime of one relayed
    request and is attached to every log line emitted during it.
    """

    INITIALIZATION = "0.0_INITIALIZATION"
    REQUEST_PARSING = "1.0_REQUEST_PARSING"
    MESSAGE_CONSTRUCTION = "2.0_MESSAGE_CONSTRUCTION"
    RATE_LIMITING = "3.0_RATE_LIMITING"
    UPSTREAM_OPEN = "4.0_UPSTREAM_OPEN"
    STREAM_RELAY = "5.0_STREAM_RELAY"
    FINALIZATION = "6.0_FINALIZATION"

    METRICS = "M_METRICS_COLLECTION"
    TRACING = "T_TRACING"
    HTTP = "H_HTTP_REQUEST"


# ============================================================================
# Terminal states and error classifications
# ============================================================================


class RequestStatus(str, Enum):
    """
    Terminal status of a relayed request.

    SUCCESS: upstream reached end-of-stream and every token was written
    ERROR: the request ended with an ErrorClass
    CANCELLED: shutdown or caller-side cancellation, not an error metric
    """

    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class ErrorClass(str, Enum):
    """
    Error classification of a relayed request.

    The value is used verbatim as the ``type`` label of the error counter
    and as the ``status`` label of the terminal-status counter.
    """

    INVALID_REQUEST = "invalid_request"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    STREAM_ERROR = "stream_error"
    DOWNSTREAM_WRITE_FAILED = "downstream_write_failed"


# HTTP-equivalent status per classification; None means no response is possible
ERROR_HTTP_STATUS: dict[ErrorClass, int | None] = {
    ErrorClass.INVALID_REQUEST: 400,
    ErrorClass.RATE_LIMITED: 429,
    ErrorClass.UPSTREAM_UNAVAILABLE: 502,
    ErrorClass.STREAM_ERROR: 502,
    ErrorClass.DOWNSTREAM_WRITE_FAILED: None,
}


# ============================================================================
# Conversation
# ============================================================================

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"
RECOGNIZED_ROLES = frozenset({ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM})

FORMAT_MARKDOWN = "markdown"
MARKDOWN_SYSTEM_PROMPT = (
    "Format every answer as GitHub-flavored Markdown: use headings, bullet "
    "lists and fenced code blocks where they help readability."
)

# Characters per token used by the length-based token estimate
CHARS_PER_TOKEN = 4


# ============================================================================
# Metric names
# ============================================================================

METRIC_PREFIX = "genai_app"

METRIC_HTTP_REQUESTS = "http_requests_total"
METRIC_HTTP_DURATION = "http_request_duration_seconds"
METRIC_CHAT_TOKENS = "chat_tokens_total"
METRIC_MODEL_LATENCY = "model_latency_seconds"
METRIC_FIRST_TOKEN_LATENCY = "first_token_latency_seconds"
METRIC_ERRORS = "errors_total"
METRIC_ACTIVE_REQUESTS = "active_requests"
METRIC_RELAY_REQUESTS = "relay_requests_total"
METRIC_TOKENS_PER_SECOND = "tokens_per_second"

MODEL_LATENCY_BUCKETS = (0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0)
FIRST_TOKEN_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.0, 5.0)

# Label values
DIRECTION_INPUT = "input"
DIRECTION_OUTPUT = "output"
OPERATION_INFERENCE = "inference"
OPERATION_CHAT = "chat"
OPERATION_API = "api"
OPERATION_FRONTEND = "frontend"
CLIENT_MODEL_LABEL = "client"
RATE_LIMIT_ERROR_TYPE = "rate_limit"


# ============================================================================
# Tracing
# ============================================================================

TRACER_NAME = "genai-app"
SPAN_CHAT_REQUEST = "chat_request"
SPAN_MESSAGE_CONSTRUCTION = "message_construction"
SPAN_MODEL_INFERENCE = "model_inference"
SPAN_STREAM_RELAY = "stream_relay"
EVENT_FIRST_TOKEN = "first_token"


# ============================================================================
# HTTP
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
HEADER_USER_ID = "X-User-ID"
STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # Disable proxy buffering
}
RATE_LIMIT_RETRY_AFTER_SECONDS = 60
