from typing import List

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./rain_or_shine.db"
    APP_URL: str = "http://localhost:8000"

    # Strava API
    STRAVA_CLIENT_ID: str = ""
    STRAVA_CLIENT_SECRET: str = ""
    STRAVA_WEBHOOK_VERIFY_TOKEN: str = ""
    STRAVA_API_BASE_URL: str = "https://www.strava.com/api/v3"
    STRAVA_TOKEN_URL: str = "https://www.strava.com/oauth/token"
    STRAVA_DEAUTHORIZE_URL: str = "https://www.strava.com/oauth/deauthorize"

    # Strava allows 100 requests / 15 min and 1000 / day; stay at 80%
    STRAVA_RATE_LIMIT_15_MIN: int = 80
    STRAVA_RATE_LIMIT_DAILY: int = 800
    STRAVA_MIN_REQUEST_INTERVAL_SECONDS: float = 0.2
    STRAVA_429_MAX_RETRIES: int = 3
    STRAVA_429_BACKOFF_SECONDS: float = 1.0
    STRAVA_RATE_LIMIT_STATE_FILE: str = ""  # empty = in-memory only

    # OpenWeatherMap One Call 3.0
    OPENWEATHERMAP_API_KEY: str = ""
    OPENWEATHERMAP_ONECALL_URL: str = "https://api.openweathermap.org/data/3.0/onecall"

    # Strava times out webhook deliveries after ~10s
    WEBHOOK_MAX_PROCESSING_SECONDS: float = 8.0
    WEBHOOK_MAX_RETRY_ATTEMPTS: int = 3
    WEBHOOK_RETRY_DELAYS_SECONDS: List[float] = [1.5, 3.0]

    # Security
    SECRET_KEY: str = "change_this_to_a_secure_random_key_in_production"
    ALGORITHM: str = "HS256"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
