from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, StrictInt

# Strict number with no NaN or Infinity
FiniteFloat = Annotated[float, Field(strict=True, allow_inf_nan=False)]


class StravaWebhookEvent(BaseModel):
    """Push subscription event as sent by Strava."""
    object_type: Literal["activity", "athlete"]
    object_id: StrictInt
    aspect_type: Literal["create", "update", "delete", "deauthorize"]
    updates: Optional[Dict[str, Any]] = None
    owner_id: StrictInt
    subscription_id: StrictInt
    event_time: Union[StrictInt, FiniteFloat]


class StravaActivity(BaseModel):
    """The subset of Strava's DetailedActivity this service reads."""
    id: int
    name: str = ""
    type: str = ""
    start_date: datetime
    start_date_local: Optional[datetime] = None
    timezone: Optional[str] = None
    start_latlng: Optional[List[float]] = None
    end_latlng: Optional[List[float]] = None
    description: Optional[str] = None
    private: bool = False
    visibility: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        # Strava sends [] for activities without GPS
        return bool(self.start_latlng) and len(self.start_latlng) == 2


class WeatherData(BaseModel):
    """Weather at an activity's start, normalized to metric units."""
    temperature: int  # °C
    temperature_feel: int  # °C
    humidity: int  # %
    pressure: int  # hPa
    wind_speed: float  # m/s
    wind_direction: int  # degrees
    wind_gust: Optional[float] = None  # m/s
    cloud_cover: int  # %
    visibility: int  # km
    condition: str
    description: str
    icon: str
    uv_index: float = 0
    timestamp: datetime
