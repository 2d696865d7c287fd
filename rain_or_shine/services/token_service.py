import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from ..errors import TokenRefreshError
from .metrics_service import MetricsService

logger = logging.getLogger(__name__)

STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TokenState:
    access_token: str
    refresh_token: str
    expires_at: datetime
    was_refreshed: bool


class TokenRefresher:
    """
    Hands out an access token that is valid for at least REFRESH_BUFFER.
    Persisting a refreshed pair is the caller's job.
    """

    REFRESH_BUFFER = timedelta(minutes=5)

    def __init__(
        self,
        http: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        token_url: str = STRAVA_TOKEN_URL,
        metrics: Optional[MetricsService] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.http = http
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.metrics = metrics
        self._clock = clock

    async def ensure_valid_token(self, access_token: str, refresh_token: str, expires_at: datetime) -> TokenState:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        # Inclusive: a token expiring exactly at the buffer edge is refreshed
        if expires_at <= self._clock() + self.REFRESH_BUFFER:
            logger.info(f"Access token expiring soon ({expires_at.isoformat()}), refreshing")
            data = await self.refresh_access_token(refresh_token)
            return TokenState(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=datetime.fromtimestamp(data["expires_at"], timezone.utc),
                was_refreshed=True,
            )

        return TokenState(access_token, refresh_token, expires_at, was_refreshed=False)

    async def refresh_access_token(self, refresh_token: str) -> dict:
        start = time.monotonic()
        try:
            response = await self.http.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.RequestError as e:
            self._record(False, start)
            raise TokenRefreshError(0, str(e)) from e

        if not response.is_success:
            self._record(False, start)
            # If refresh fails, the user must re-authenticate
            raise TokenRefreshError(response.status_code, response.text)

        try:
            data = response.json()
            token = {
                "access_token": str(data["access_token"]),
                "refresh_token": str(data["refresh_token"]),
                "expires_at": int(data["expires_at"]),
            }
            expires = datetime.fromtimestamp(token["expires_at"], timezone.utc)
        except (ValueError, KeyError, TypeError, OverflowError, OSError) as e:
            self._record(False, start)
            logger.error(f"Malformed token refresh response: {e}")
            raise TokenRefreshError(response.status_code, "malformed token response") from e

        self._record(True, start)
        logger.info(f"Access token refreshed, new expiry {expires.isoformat()}")
        return token

    def _record(self, success: bool, start: float):
        if self.metrics:
            self.metrics.record_token_refresh(success, (time.monotonic() - start) * 1000)
