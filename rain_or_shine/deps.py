from dataclasses import dataclass
from typing import Callable, Union

import httpx
from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.orm import Session

from .config import Settings
from .database import get_db
from .models import User
from .repositories import UserRepository
from .security import decode_access_token
from .services.activity_processor import ActivityProcessor
from .services.metrics_service import MetricsService
from .services.rate_limiter import StravaRateLimiter
from .services.strava_client import StravaClient
from .services.token_service import TokenRefresher
from .services.weather_service import WeatherService
from .services.webhook_service import WebhookService


# --- Authentication ---

@dataclass
class Authenticated:
    user: User


@dataclass
class Unauthenticated:
    reason: str


AuthResult = Union[Authenticated, Unauthenticated]


def authenticate_request(request: Request, db: Session) -> AuthResult:
    """Resolve the session cookie to a user without raising."""
    token = request.cookies.get("session_token")
    if not token:
        return Unauthenticated("Not authenticated")

    payload = decode_access_token(token)
    if not payload:
        return Unauthenticated("Invalid or expired session")

    user_id_str = payload.get("sub")
    if not user_id_str:
        return Unauthenticated("Invalid token payload")

    try:
        user_id_int = int(user_id_str)
    except (ValueError, TypeError):
        return Unauthenticated("Invalid user ID in token")

    user = db.query(User).filter(User.id == user_id_int).first()
    if not user:
        return Unauthenticated("User not found")
    return Authenticated(user)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    result = authenticate_request(request, db)
    if isinstance(result, Unauthenticated):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.reason,
        )
    return result.user


# --- Service wiring ---

@dataclass
class Services:
    http: httpx.AsyncClient
    metrics: MetricsService
    users: UserRepository
    rate_limiter: StravaRateLimiter
    strava: StravaClient
    tokens: TokenRefresher
    weather: WeatherService
    processor: ActivityProcessor
    webhooks: WebhookService


def build_services(settings: Settings, session_factory: Callable[[], Session], http: httpx.AsyncClient) -> Services:
    """One instance of each pipeline component per process."""
    metrics = MetricsService(session_factory)
    users = UserRepository(session_factory)
    rate_limiter = StravaRateLimiter(
        limit_15m=settings.STRAVA_RATE_LIMIT_15_MIN,
        limit_daily=settings.STRAVA_RATE_LIMIT_DAILY,
        min_interval=settings.STRAVA_MIN_REQUEST_INTERVAL_SECONDS,
        max_retries=settings.STRAVA_429_MAX_RETRIES,
        backoff_seconds=settings.STRAVA_429_BACKOFF_SECONDS,
        state_file=settings.STRAVA_RATE_LIMIT_STATE_FILE or None,
    )
    strava = StravaClient(
        http,
        rate_limiter,
        metrics=metrics,
        base_url=settings.STRAVA_API_BASE_URL,
        deauthorize_url=settings.STRAVA_DEAUTHORIZE_URL,
    )
    tokens = TokenRefresher(
        http,
        client_id=settings.STRAVA_CLIENT_ID,
        client_secret=settings.STRAVA_CLIENT_SECRET,
        token_url=settings.STRAVA_TOKEN_URL,
        metrics=metrics,
    )
    weather = WeatherService(
        http,
        api_key=settings.OPENWEATHERMAP_API_KEY,
        onecall_url=settings.OPENWEATHERMAP_ONECALL_URL,
        metrics=metrics,
    )
    processor = ActivityProcessor(users, strava, tokens, weather)
    webhooks = WebhookService(
        users,
        processor,
        metrics=metrics,
        max_processing_seconds=settings.WEBHOOK_MAX_PROCESSING_SECONDS,
        max_attempts=settings.WEBHOOK_MAX_RETRY_ATTEMPTS,
        retry_delays=settings.WEBHOOK_RETRY_DELAYS_SECONDS,
    )
    return Services(http, metrics, users, rate_limiter, strava, tokens, weather, processor, webhooks)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_webhook_service(request: Request) -> WebhookService:
    return get_services(request).webhooks


def get_activity_processor(request: Request) -> ActivityProcessor:
    return get_services(request).processor


def get_strava_client(request: Request) -> StravaClient:
    return get_services(request).strava


def get_user_repository(request: Request) -> UserRepository:
    return get_services(request).users
