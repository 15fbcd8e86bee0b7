from genai_relay.rate_limiting.rate_limiter import RateLimitStats, SlidingWindowRateLimiter, get_client_key

__all__ = ["RateLimitStats", "SlidingWindowRateLimiter", "get_client_key"]
