"""
Rate limit domain models.

RateLimitState is the per-exchange view of the fixed-window counter and the
backoff marker. RateLimitUsage is a read-only projection of that state for
dashboards and pacing decisions; it is derived on demand and never stored.
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, computed_field

from src.marketfeed.enums import RateLimitStatus

WARNING_THRESHOLD = 70.0
CRITICAL_THRESHOLD = 90.0

# Recommended pacing per usage band, in milliseconds
_BAND_DELAYS_MS = {
    RateLimitStatus.NORMAL: 1000,
    RateLimitStatus.WARNING: 2000,
    RateLimitStatus.CRITICAL: 5000,
}


class RateLimitState(BaseModel):
    """Per-exchange fixed-window counter state."""

    model_config = ConfigDict(frozen=True)

    exchange: str
    current_requests: int = Field(default=0, ge=0)
    max_requests_per_window: int = Field(..., ge=1)
    window_duration_seconds: int = Field(..., ge=1)
    resets_at: datetime | None = None
    backoff_until: datetime | None = None

    @property
    def in_backoff(self) -> bool:
        """Check if the backoff deadline lies in the future."""
        return self.backoff_until is not None and self.backoff_until > datetime.now(
            UTC
        )

    def usage(self) -> "RateLimitUsage":
        """Project this state into a usage summary."""
        return RateLimitUsage.from_counts(
            current_requests=self.current_requests,
            max_requests=self.max_requests_per_window,
            resets_at=self.resets_at,
        )


class RateLimitUsage(BaseModel):
    """Read-only usage projection of a rate-limit window."""

    model_config = ConfigDict(frozen=True)

    current_requests: int = Field(ge=0)
    max_requests: int = Field(ge=1)
    remaining: int = Field(ge=0)
    usage_percentage: float = Field(ge=0.0)
    status: RateLimitStatus
    recommended_delay_ms: int = Field(ge=0)
    resets_at: datetime | None = None

    @classmethod
    def from_counts(
        cls,
        current_requests: int,
        max_requests: int,
        resets_at: datetime | None = None,
    ) -> "RateLimitUsage":
        """
        Derive usage band and pacing from raw counts.

        Args:
            current_requests: Requests counted in the active window
            max_requests: Configured ceiling for the window
            resets_at: When the window clears, if known

        Returns:
            Usage projection

        """
        percentage = current_requests * 100 / max_requests

        if current_requests >= max_requests:
            status = RateLimitStatus.EXCEEDED
        elif percentage >= CRITICAL_THRESHOLD:
            status = RateLimitStatus.CRITICAL
        elif percentage >= WARNING_THRESHOLD:
            status = RateLimitStatus.WARNING
        else:
            status = RateLimitStatus.NORMAL

        if status is RateLimitStatus.EXCEEDED:
            delay_ms = 60_000
            if resets_at is not None:
                remaining_window = resets_at - datetime.now(UTC)
                delay_ms = max(0, int(remaining_window / timedelta(milliseconds=1)))
        else:
            delay_ms = _BAND_DELAYS_MS[status]

        return cls(
            current_requests=current_requests,
            max_requests=max_requests,
            remaining=max(0, max_requests - current_requests),
            usage_percentage=round(percentage, 2),
            status=status,
            recommended_delay_ms=delay_ms,
            resets_at=resets_at,
        )

    @computed_field  # type: ignore[misc]
    @property
    def is_exhausted(self) -> bool:
        """Whether the budget for the active window is used up."""
        return self.status is RateLimitStatus.EXCEEDED
