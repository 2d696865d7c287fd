"""
Weather lookup for activities via the OpenWeatherMap One Call 3.0 API.

The data source depends on how old the activity is:
- up to 1 hour old: current conditions
- 1 hour to 5 days: Time Machine (historical) lookup
- older than 5 days: current conditions as a degraded fallback
"""
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from ..errors import (
    WeatherApiError,
    WeatherAuthError,
    WeatherFetchError,
    WeatherRateLimitError,
    WeatherTimeoutError,
)
from ..schemas import WeatherData
from .metrics_service import MetricsService

logger = logging.getLogger(__name__)

ONECALL_URL = "https://api.openweathermap.org/data/3.0/onecall"

HISTORICAL_LIMIT_HOURS = 120  # Time Machine limit
RECENT_ACTIVITY_THRESHOLD_HOURS = 1
API_TIMEOUT_SECONDS = 5.0
DEFAULT_VISIBILITY_M = 10000


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WeatherService:
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        onecall_url: str = ONECALL_URL,
        metrics: Optional[MetricsService] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.http = http
        self.api_key = api_key
        self.onecall_url = onecall_url.rstrip("/")
        self.metrics = metrics
        self._clock = clock

    async def get_weather_for_activity(self, lat: float, lon: float, activity_time: datetime, activity_id: str) -> WeatherData:
        """
        Weather at (lat, lon) for an activity that started at activity_time.
        Raises WeatherFetchError on any provider failure; there is no retry.
        """
        if activity_time.tzinfo is None:
            activity_time = activity_time.replace(tzinfo=timezone.utc)
        hours_since = (self._clock() - activity_time).total_seconds() / 3600

        logger.info(f"Fetching weather for activity {activity_id} at ({lat}, {lon}), {hours_since:.1f}h ago")

        try:
            if hours_since <= RECENT_ACTIVITY_THRESHOLD_HOURS:
                source = "current"
                weather = await self._get_current_weather(lat, lon)
            elif hours_since <= HISTORICAL_LIMIT_HOURS:
                source = "historical"
                weather = await self._get_historical_weather(lat, lon, activity_time)
            else:
                source = "current-fallback"
                logger.warning(
                    f"Activity {activity_id} outside Time Machine range "
                    f"({hours_since:.1f}h > {HISTORICAL_LIMIT_HOURS}h), using current weather"
                )
                weather = await self._get_current_weather(lat, lon)
        except WeatherApiError as e:
            logger.error(f"Failed to fetch weather data for activity {activity_id}: {e}")
            raise WeatherFetchError(e) from e

        logger.info(
            f"Weather for activity {activity_id} retrieved from {source}: "
            f"{weather.temperature}°C, {weather.condition}"
        )
        return weather

    async def _get_current_weather(self, lat: float, lon: float) -> WeatherData:
        params = {
            "lat": f"{lat:.6f}",
            "lon": f"{lon:.6f}",
            "appid": self.api_key,
            "units": "metric",
            "exclude": "minutely,hourly,daily,alerts",
        }
        data = await self._get(self.onecall_url, params, "GET /onecall", "One Call API")
        current = data.get("current")
        if not current:
            raise WeatherApiError("Weather API error: response has no current conditions")
        return self.format_weather_data(current)

    async def _get_historical_weather(self, lat: float, lon: float, when: datetime) -> WeatherData:
        params = {
            "lat": f"{lat:.6f}",
            "lon": f"{lon:.6f}",
            "dt": str(int(when.timestamp())),
            "appid": self.api_key,
            "units": "metric",
        }
        data = await self._get(f"{self.onecall_url}/timemachine", params, "GET /timemachine", "Time Machine API")
        # Time Machine returns an array with a single item
        points = data.get("data")
        if not isinstance(points, list) or not points:
            raise WeatherApiError("Weather API error: Time Machine returned no data")
        return self.format_weather_data(points[0])

    async def _get(self, url: str, params: Dict[str, str], endpoint: str, api_name: str) -> Dict[str, Any]:
        start = time.monotonic()
        try:
            response = await self.http.get(url, params=params, timeout=API_TIMEOUT_SECONDS)
        except httpx.TimeoutException as e:
            self._record(endpoint, start, error=str(e) or "timeout")
            logger.error(f"{api_name} request timed out")
            raise WeatherTimeoutError("Weather API request timeout") from e
        except httpx.RequestError as e:
            self._record(endpoint, start, error=str(e))
            logger.error(f"{api_name} request failed: {e}")
            raise WeatherApiError(f"Weather API error: {e}") from e

        self._record(endpoint, start, status_code=response.status_code)
        if response.status_code == 401:
            raise WeatherAuthError("Weather API authentication failed")
        if response.status_code == 429:
            raise WeatherRateLimitError("Weather API rate limit exceeded")
        if not response.is_success:
            logger.error(f"{api_name} request failed: {response.status_code} {response.text}")
            raise WeatherApiError(f"Weather API error: {response.status_code} {response.text}")
        try:
            data = response.json()
        except ValueError as e:
            raise WeatherApiError(f"Weather API error: unexpected response body from {api_name}") from e
        if not isinstance(data, dict):
            raise WeatherApiError(f"Weather API error: unexpected response body from {api_name}")
        return data

    def _record(self, endpoint: str, start: float, status_code: Optional[int] = None, error: Optional[str] = None):
        if self.metrics:
            self.metrics.record_api_call("weather_api", endpoint, (time.monotonic() - start) * 1000, status_code, error)

    @staticmethod
    def format_weather_data(data: Dict[str, Any]) -> WeatherData:
        """Normalize a One Call current/Time Machine data point."""
        try:
            condition = data["weather"][0]
            gust = data.get("wind_gust")
            return WeatherData(
                temperature=int(round_half_up(data["temp"])),
                temperature_feel=int(round_half_up(data["feels_like"])),
                humidity=data["humidity"],
                pressure=data["pressure"],
                wind_speed=round_half_up(data["wind_speed"], 1),
                wind_direction=data["wind_deg"],
                wind_gust=round_half_up(gust, 1) if gust else None,
                cloud_cover=data["clouds"],
                visibility=int(round_half_up((data.get("visibility") or DEFAULT_VISIBILITY_M) / 1000)),
                condition=condition["main"],
                description=condition["description"],
                icon=condition["icon"],
                uv_index=data.get("uvi") or 0,
                timestamp=datetime.fromtimestamp(data["dt"], timezone.utc),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise WeatherApiError(f"Weather API error: unexpected payload ({e})") from e
