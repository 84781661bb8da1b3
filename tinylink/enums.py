"""Shared enums for the TinyLink service.

Status values used for health reporting and metric labels. Using enums instead
of string literals keeps label values consistent across modules.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_str(cls, value: str) -> "HealthStatus":
        """Safely parse from string, falling back to UNHEALTHY for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNHEALTHY


class RequestStatus(StrEnum):
    """Outcome of a link operation, used as a metric label."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Whether a redirect lookup was served from the cache."""

    HIT = "hit"
    MISS = "miss"
    DISABLED = "disabled"
