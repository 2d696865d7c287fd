"""
Pytest configuration and fixtures

Every test gets its own in-memory SQLite database. External HTTP (Strava,
OpenWeatherMap) is served by httpx.MockTransport handlers, so nothing leaves
the process.
"""
import os

# Must be set before rain_or_shine.database creates its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rain_or_shine.config import settings
from rain_or_shine.database import Base
from rain_or_shine.deps import Services
from rain_or_shine.models import User, UserPreference
from rain_or_shine.repositories import UserRepository
from rain_or_shine.services.activity_processor import ActivityProcessor
from rain_or_shine.services.metrics_service import MetricsService
from rain_or_shine.services.rate_limiter import StravaRateLimiter
from rain_or_shine.services.strava_client import StravaClient
from rain_or_shine.services.token_service import TokenRefresher
from rain_or_shine.services.weather_service import WeatherService
from rain_or_shine.services.webhook_service import WebhookService

STRAVA_BASE = "https://www.strava.com/api/v3"
TOKEN_URL = "https://www.strava.com/oauth/token"
DEAUTHORIZE_URL = "https://www.strava.com/oauth/deauthorize"
ONECALL_URL = "https://api.openweathermap.org/data/3.0/onecall"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def make_user(session_factory):
    def _make_user(
        strava_athlete_id: int = 12345,
        weather_enabled: bool = True,
        expires_in: timedelta = timedelta(hours=1),
        access_token: str = "test-access-token",
        refresh_token: str = "test-refresh-token",
        temperature_unit: Optional[str] = None,
        weather_format: str = "detailed",
        **preference_kwargs,
    ) -> User:
        with session_factory() as db:
            user = User(
                strava_athlete_id=strava_athlete_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=int((datetime.now(timezone.utc) + expires_in).timestamp()),
                weather_enabled=weather_enabled,
                first_name="Test",
                last_name="User",
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            if temperature_unit:
                db.add(UserPreference(
                    user_id=user.id,
                    temperature_unit=temperature_unit,
                    weather_format=weather_format,
                    **preference_kwargs,
                ))
                db.commit()
            db.refresh(user)
            user.preferences  # load before detaching
            db.expunge(user)
            return user
    return _make_user


class FakeClock:
    """Monotonic clock that only moves when told to (or when FakeClock.sleep is awaited)."""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def _base_url(request: httpx.Request) -> str:
    return f"{request.url.scheme}://{request.url.host}{request.url.path}"


Handler = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """
    Routes requests by (method, url without query) to handlers and records
    every request it sees.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, handler):
        if not callable(handler):
            status, payload = handler
            handler = lambda request, status=status, payload=payload: httpx.Response(status, json=payload)
        self.routes[(method, url)] = handler

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and _base_url(r) == url
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, _base_url(request))
        if key not in self.routes:
            return httpx.Response(500, json={"message": f"no fake route for {key}"})
        return self.routes[key](request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def upstream():
    return FakeUpstream()


def strava_activity(**overrides) -> dict:
    activity = {
        "id": 123456,
        "name": "Morning Run",
        "type": "Run",
        "start_date": (datetime.now(timezone.utc) - timedelta(minutes=30)).isoformat().replace("+00:00", "Z"),
        "start_date_local": "2026-10-17T08:00:00Z",
        "timezone": "(GMT+01:00) Europe/Berlin",
        "start_latlng": [52.52, 13.405],
        "end_latlng": [52.53, 13.41],
        "description": "Easy morning run",
        "private": False,
        "visibility": "everyone",
    }
    activity.update(overrides)
    return activity


def onecall_point(**overrides) -> dict:
    point = {
        "dt": int(datetime.now(timezone.utc).timestamp()),
        "temp": 15,
        "feels_like": 13,
        "humidity": 65,
        "pressure": 1013,
        "wind_speed": 3.5,
        "wind_deg": 225,
        "clouds": 40,
        "visibility": 10000,
        "uvi": 3,
        "weather": [{"main": "Clear", "description": "clear sky", "icon": "01d"}],
    }
    point.update(overrides)
    return point


def echo_update(request: httpx.Request) -> httpx.Response:
    """PUT handler that returns the activity with the submitted fields applied."""
    body = json.loads(request.content)
    return httpx.Response(200, json=strava_activity(**body))


def session_cookie(user_id, expires_in: timedelta = timedelta(hours=1)) -> str:
    """JWT in the shape the OAuth front end sets as `session_token`."""
    claims = {"sub": str(user_id), "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


@pytest.fixture
def services(session_factory, upstream, clock):
    """The full pipeline wired to fake upstreams and a fake clock."""
    http = upstream.client()
    metrics = MetricsService(session_factory)
    users = UserRepository(session_factory)
    rate_limiter = StravaRateLimiter(min_interval=0, sleep=clock.sleep)
    strava = StravaClient(http, rate_limiter, metrics=metrics, base_url=STRAVA_BASE, deauthorize_url=DEAUTHORIZE_URL)
    tokens = TokenRefresher(http, client_id="client-id", client_secret="client-secret", token_url=TOKEN_URL, metrics=metrics)
    weather = WeatherService(http, api_key="owm-key", onecall_url=ONECALL_URL, metrics=metrics)
    processor = ActivityProcessor(users, strava, tokens, weather)
    webhooks = WebhookService(users, processor, metrics=metrics, clock=clock, sleep=clock.sleep)
    return Services(http, metrics, users, rate_limiter, strava, tokens, weather, processor, webhooks)
