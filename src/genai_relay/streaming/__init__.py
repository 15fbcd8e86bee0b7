"""
Streaming Module

- **downstream.py**: Response sinks the relay writes tokens into
- **request_lifecycle.py**: Per-request coordinator (admission, deadlines, disconnects)
"""

from genai_relay.streaming.downstream import AsgiDownstreamSink, DownstreamSink

__all__ = ["AsgiDownstreamSink", "DownstreamSink"]
