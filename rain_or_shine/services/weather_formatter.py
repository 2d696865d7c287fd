import re
from typing import Optional

from ..models import UserPreference
from ..schemas import WeatherData
from .weather_service import round_half_up

MPS_TO_MPH = 2.23694
KM_TO_MI = 0.621371

COMPASS_POINTS = ["N", "NE", "E", "SE", "S", "SW", "W", "NW"]

# Every format emits "<temp>°<unit>, Feels like <temp>°<unit>"; this is what
# marks an activity as already enriched.
WEATHER_MARKER_RE = re.compile(r"-?\d+°[CF], Feels like -?\d+°[CF]")


def has_weather_data(description: Optional[str]) -> bool:
    return bool(description) and WEATHER_MARKER_RE.search(description) is not None


def wind_compass(degrees: float) -> str:
    return COMPASS_POINTS[int((degrees % 360) / 45 + 0.5) % 8]


def _fmt_number(value: float) -> str:
    return f"{value:g}"


def format_weather(weather: WeatherData, preferences: Optional[UserPreference] = None) -> str:
    """One-line weather summary in the user's preferred units and verbosity."""
    unit = getattr(preferences, "temperature_unit", None) or "fahrenheit"
    style = getattr(preferences, "weather_format", None) or "detailed"
    include_uv = bool(getattr(preferences, "include_uv_index", False))
    include_visibility = bool(getattr(preferences, "include_visibility", False))

    if unit == "celsius":
        temp, feel, symbol = weather.temperature, weather.temperature_feel, "C"
        wind, gust, wind_unit = weather.wind_speed, weather.wind_gust, "m/s"
        visibility, visibility_unit = weather.visibility, "km"
    else:
        temp = int(round_half_up(weather.temperature * 9 / 5 + 32))
        feel = int(round_half_up(weather.temperature_feel * 9 / 5 + 32))
        symbol = "F"
        wind = int(round_half_up(weather.wind_speed * MPS_TO_MPH))
        gust = int(round_half_up(weather.wind_gust * MPS_TO_MPH)) if weather.wind_gust else None
        wind_unit = "mph"
        visibility, visibility_unit = int(round_half_up(weather.visibility * KM_TO_MI)), "mi"

    parts = [weather.condition, f"{temp}°{symbol}", f"Feels like {feel}°{symbol}"]

    if style == "detailed":
        parts.append(f"Humidity {weather.humidity}%")
        wind_text = f"Wind {_fmt_number(wind)}{wind_unit} from {wind_compass(weather.wind_direction)}"
        if gust:
            wind_text += f" (gusts {_fmt_number(gust)}{wind_unit})"
        parts.append(wind_text)

    if include_uv:
        parts.append(f"UV {_fmt_number(weather.uv_index)}")
    if include_visibility:
        parts.append(f"Visibility {visibility}{visibility_unit}")

    return ", ".join(parts)


def build_description(existing: Optional[str], weather_line: str) -> str:
    existing = (existing or "").rstrip()
    if not existing:
        return weather_line
    return f"{existing}\n\n{weather_line}"
