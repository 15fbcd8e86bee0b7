"""
Metrics API Models

Bodies posted by the chat frontend after each exchange, and the summary
shape its dashboard polls. Field names match what the frontend sends, so
reports use snake_case while the summary uses camelCase aliases.
"""

from pydantic import BaseModel, ConfigDict, Field


class ClientMetricsReport(BaseModel):
    """
    Timing of one exchange as measured by the client.

    Every numeric field defaults to zero so partial reports from older
    frontends are still accepted.
    """

    model_config = ConfigDict(extra="ignore")

    message_id: str = Field(default="", description="Client-side message identifier")
    tokens_in: int = Field(default=0, ge=0, description="Estimated prompt tokens")
    tokens_out: int = Field(default=0, ge=0, description="Tokens received")
    response_time_ms: float = Field(default=0.0, ge=0, description="Time until the stream ended")
    time_to_first_token_ms: float = Field(default=0.0, ge=0, description="Time until the first token")


class ClientErrorReport(BaseModel):
    """A failed exchange as seen by the client."""

    model_config = ConfigDict(extra="ignore")

    error_type: str = Field(..., min_length=1, description="Short error category, e.g. 'network'")
    status_code: int | None = Field(default=None, description="HTTP status the client received")
    input_length: int = Field(default=0, ge=0, description="Length of the message that failed")


class LogAcknowledgement(BaseModel):
    success: bool = True


class MetricsSummaryResponse(BaseModel):
    """
    Aggregate over the retained window.

    ``average_response_time`` is in seconds; ``error_rate`` is the share of
    failed exchanges among all recorded exchanges.
    """

    model_config = ConfigDict(populate_by_name=True)

    total_requests: int = Field(alias="totalRequests")
    average_response_time: float = Field(alias="averageResponseTime")
    tokens_generated: int = Field(alias="tokensGenerated")
    active_users: int = Field(alias="activeUsers")
    error_rate: float = Field(alias="errorRate")
