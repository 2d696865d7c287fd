"""
Activity enrichment: fetch a Strava activity, look up the weather at its
start, and write a weather summary into its description.

process_activity() reports expected conditions (skips, upstream failures)
through ProcessingResult and never raises for them. Only internal problems,
such as a missing account or a database outage, propagate.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Dict, Optional

import httpx
from pydantic import BaseModel

from ..errors import AccountNotFoundError, EnrichmentError, ErrorKind
from ..repositories import UserRepository
from ..schemas import WeatherData
from .strava_client import StravaClient
from .token_service import TokenRefresher
from .weather_formatter import build_description, format_weather, has_weather_data
from .weather_service import WeatherService

logger = logging.getLogger(__name__)

SKIP_ALREADY_PROCESSED = "Already has weather data"
SKIP_WEATHER_DISABLED = "Weather updates disabled"
SKIP_NO_GPS = "No GPS coordinates"


class ProcessingResult(BaseModel):
    success: bool
    activity_id: str
    weather_data: Optional[WeatherData] = None
    skipped: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def retryable(self) -> bool:
        # 404 right after a create event: Strava has not made the activity readable yet
        return not self.success and self.error_kind == ErrorKind.NOT_YET_AVAILABLE

    @classmethod
    def skip(cls, activity_id: str, reason: str) -> "ProcessingResult":
        return cls(success=True, activity_id=activity_id, skipped=True, reason=reason)

    @classmethod
    def failure(cls, activity_id: str, error: str, kind: ErrorKind = ErrorKind.GENERIC) -> "ProcessingResult":
        return cls(success=False, activity_id=activity_id, error=error, error_kind=kind)


class ActivityProcessor:
    def __init__(
        self,
        users: UserRepository,
        strava: StravaClient,
        tokens: TokenRefresher,
        weather: WeatherService,
    ):
        self.users = users
        self.strava = strava
        self.tokens = tokens
        self.weather = weather
        self._token_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._activity_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def process_activity(self, activity_id: str, user_id: int, attempt: int = 0) -> ProcessingResult:
        activity_id = str(activity_id)
        user = self.users.find_by_id(user_id)
        if not user:
            raise AccountNotFoundError(user_id)

        logger.info(f"Processing activity {activity_id} for user {user_id} (attempt {attempt + 1})")

        # Duplicate deliveries of the same activity queue here; the second one
        # then sees the weather marker and skips.
        async with self._activity_locks[activity_id]:
            try:
                return await self._process(activity_id, user)
            except (EnrichmentError, httpx.HTTPError) as e:
                kind = getattr(e, "kind", ErrorKind.GENERIC)
                logger.warning(f"Processing activity {activity_id} failed ({kind.value}): {e}")
                return ProcessingResult.failure(activity_id, str(e), kind)

    async def _process(self, activity_id: str, user) -> ProcessingResult:
        access_token = await self._valid_access_token(user)

        activity = await self.strava.get_activity(activity_id, access_token)

        if has_weather_data(activity.description):
            logger.info(f"Activity {activity_id} already has weather data, skipping")
            return ProcessingResult.skip(activity_id, SKIP_ALREADY_PROCESSED)

        if not user.weather_enabled:
            logger.info(f"Weather updates disabled for user {user.id}, skipping activity {activity_id}")
            return ProcessingResult.skip(activity_id, SKIP_WEATHER_DISABLED)

        if not activity.has_coordinates:
            logger.info(f"Activity {activity_id} has no GPS coordinates, skipping")
            return ProcessingResult.skip(activity_id, SKIP_NO_GPS)

        lat, lon = activity.start_latlng
        weather = await self.weather.get_weather_for_activity(lat, lon, activity.start_date, activity_id)

        weather_line = format_weather(weather, user.preferences)
        description = build_description(activity.description, weather_line)
        await self.strava.update_activity(activity_id, access_token, {"description": description})

        logger.info(f"Activity {activity_id} updated with weather: {weather_line}")
        return ProcessingResult(success=True, activity_id=activity_id, weather_data=weather)

    async def _valid_access_token(self, user) -> str:
        # Concurrent deliveries for one athlete must not both spend the refresh token
        async with self._token_locks[user.id]:
            current = self.users.find_by_id(user.id) or user
            state = await self.tokens.ensure_valid_token(
                current.access_token, current.refresh_token, current.token_expires_at
            )
            if state.was_refreshed:
                self.users.update_tokens(user.id, state.access_token, state.refresh_token, state.expires_at)
            return state.access_token
