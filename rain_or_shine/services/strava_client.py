import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..errors import (
    ActivityNotYetAvailableError,
    StravaApiError,
    StravaAuthError,
    StravaForbiddenError,
    StravaRateLimitError,
)
from ..schemas import StravaActivity
from .metrics_service import MetricsService
from .rate_limiter import StravaRateLimiter

logger = logging.getLogger(__name__)

STRAVA_API_BASE_URL = "https://www.strava.com/api/v3"
STRAVA_DEAUTHORIZE_URL = "https://www.strava.com/oauth/deauthorize"


class StravaClient:
    """
    Strava activity API. Every activity read/write goes through the shared
    rate limiter; errors come back as typed StravaApiError subclasses.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        rate_limiter: StravaRateLimiter,
        metrics: Optional[MetricsService] = None,
        base_url: str = STRAVA_API_BASE_URL,
        deauthorize_url: str = STRAVA_DEAUTHORIZE_URL,
    ):
        self.http = http
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.base_url = base_url.rstrip("/")
        self.deauthorize_url = deauthorize_url

    async def get_activity(self, activity_id: str, access_token: str) -> StravaActivity:
        logger.debug(f"Fetching activity {activity_id} from Strava")
        data = await self._request("GET", f"/activities/{activity_id}", access_token, "getActivity")
        activity = self._parse_activity(data)
        logger.info(f"Activity {activity_id} retrieved ({activity.type}: {activity.name})")
        return activity

    async def update_activity(self, activity_id: str, access_token: str, update: Dict[str, Any]) -> StravaActivity:
        logger.debug(f"Updating activity {activity_id} on Strava (fields: {sorted(update)})")
        data = await self._request("PUT", f"/activities/{activity_id}", access_token, "updateActivity", json=update)
        activity = self._parse_activity(data)
        logger.info(f"Activity {activity_id} updated")
        return activity

    async def revoke_token(self, access_token: str) -> None:
        """Best-effort deauthorization. Never raises."""
        try:
            response = await self.http.post(
                self.deauthorize_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            if response.is_success:
                logger.info("Strava access token revoked")
            else:
                logger.warning(f"Token revocation returned non-OK status {response.status_code}")
        except Exception as e:
            logger.warning(f"Failed to revoke Strava access token: {e}")

    async def _request(self, method: str, path: str, access_token: str, operation: str,
                       json: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        endpoint = f"{method} {path.rsplit('/', 1)[0]}/:id"
        headers = {"Authorization": f"Bearer {access_token}"}

        async def send() -> httpx.Response:
            return await self.http.request(method, url, headers=headers, json=json)

        start = time.monotonic()
        try:
            response = await self.rate_limiter.schedule(send)
        except httpx.RequestError as e:
            self._record(endpoint, start, error=str(e))
            logger.error(f"Strava {operation} connection error: {e}")
            raise StravaApiError(f"Strava API connection error: {e}") from e

        self._record(endpoint, start, status_code=response.status_code)
        if not response.is_success:
            self._raise_for_status(response, operation, path)
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Strava {operation} returned a non-JSON body for {path}: {response.text[:200]}")
            raise StravaApiError(f"Unexpected response from Strava ({response.status_code}): not JSON", response.status_code) from e

    @staticmethod
    def _parse_activity(data: Any) -> StravaActivity:
        try:
            return StravaActivity(**data)
        except (TypeError, ValidationError) as e:
            raise StravaApiError(f"Unexpected activity payload from Strava: {e}") from e

    def _record(self, endpoint: str, start: float, status_code: Optional[int] = None, error: Optional[str] = None):
        if self.metrics:
            duration_ms = (time.monotonic() - start) * 1000
            self.metrics.record_api_call("strava_api", endpoint, duration_ms, status_code, error)

    def _raise_for_status(self, response: httpx.Response, operation: str, path: str):
        status = response.status_code
        body = response.text
        logger.error(f"Strava {operation} failed for {path}: {status} {body}")

        if status == 401:
            raise StravaAuthError("Strava access token expired or invalid", status)
        if status == 403:
            raise StravaForbiddenError("Not authorized to perform this action", status)
        if status == 404:
            raise ActivityNotYetAvailableError("Resource not found or not accessible", status)
        if status == 429:
            raise StravaRateLimitError("Rate limit exceeded", status)
        raise StravaApiError(f"Strava API error ({status}): {body}", status)
