"""
Exception Module

Structured exception hierarchy for the streaming relay.

Module Structure:
-----------------
- **base.py**: RelayError base class + ConfigurationError
- **validation.py**: Inbound request validation
- **rate_limit.py**: Rate limiting
- **upstream.py**: Completion source failures
- **streaming.py**: Downstream write failures

Usage:
------
```python
from genai_relay.core.exceptions import UpstreamUnavailableError
```

Author: System Architect
Date: 2025-12-08
"""

from genai_relay.core.exceptions.base import ConfigurationError, RelayError
from genai_relay.core.exceptions.rate_limit import RateLimitExceededError
from genai_relay.core.exceptions.streaming import DownstreamWriteError
from genai_relay.core.exceptions.upstream import (
    UpstreamError,
    UpstreamStreamError,
    UpstreamUnavailableError,
)
from genai_relay.core.exceptions.validation import InvalidRequestError

__all__ = [
    "ConfigurationError",
    "DownstreamWriteError",
    "InvalidRequestError",
    "RateLimitExceededError",
    "RelayError",
    "UpstreamError",
    "UpstreamStreamError",
    "UpstreamUnavailableError",
]
