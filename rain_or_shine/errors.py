"""
Error types shared by the enrichment pipeline.

Upstream failures are tagged with an ErrorKind so callers can decide how to
react (retry, surface as 401, ...) by type instead of by message text.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_YET_AVAILABLE = "not_yet_available"
    AUTH_EXPIRED = "auth_expired"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    WEATHER_UNAVAILABLE = "weather_unavailable"
    GENERIC = "generic"


class EnrichmentError(Exception):
    """Base class for expected failures while enriching an activity."""

    kind = ErrorKind.GENERIC


class AccountNotFoundError(Exception):
    """The account referenced by a processing request does not exist.

    Not an EnrichmentError, so it propagates out of the processor.
    """

    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


# --- Strava ---

class StravaApiError(EnrichmentError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StravaAuthError(StravaApiError):
    kind = ErrorKind.AUTH_EXPIRED


class StravaForbiddenError(StravaApiError):
    kind = ErrorKind.FORBIDDEN


class ActivityNotYetAvailableError(StravaApiError):
    """404 from Strava. Right after a create event this usually means the
    activity is not readable yet rather than gone."""

    kind = ErrorKind.NOT_YET_AVAILABLE


class StravaRateLimitError(StravaApiError):
    kind = ErrorKind.RATE_LIMITED


class TokenRefreshError(EnrichmentError):
    kind = ErrorKind.AUTH_EXPIRED

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Token refresh failed ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


# --- Weather ---

class WeatherApiError(Exception):
    """Provider-level failure. Always wrapped in WeatherFetchError before it
    leaves the weather service."""


class WeatherAuthError(WeatherApiError):
    pass


class WeatherRateLimitError(WeatherApiError):
    pass


class WeatherTimeoutError(WeatherApiError):
    pass


class WeatherFetchError(EnrichmentError):
    kind = ErrorKind.WEATHER_UNAVAILABLE

    def __init__(self, cause: Exception):
        super().__init__(f"Failed to fetch weather data: {cause}")
        self.cause = cause
