"""
Weather advisory client.
Fetches OpenWeatherMap data for the booking date and turns it into an
indoor/outdoor seating hint. The advisory is non-authoritative: every failure
surfaces as AdvisoryUnavailableError and callers fall back to neutral_advisory().
"""

import datetime as dt
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from .config import WeatherConfig
from .error_models import AdvisoryUnavailableError
from .logging_adapter import get_safe_logger
from .models import SeatingAdvisory

logger = get_safe_logger("reservations.weather_client")

BAD_WEATHER_WORDS = ("rain", "storm", "thunder", "snow", "drizzle")


class WeatherInfo(BaseModel):
    """Weather for one location and point in time"""
    condition: str
    temperature_c: float
    description: str = ""
    humidity: Optional[float] = None
    wind_speed: Optional[float] = Field(None, description="m/s")


def recommend_seating(weather: WeatherInfo) -> SeatingAdvisory:
    """
    Seating rules:
    - rain, storm, thunder, snow or drizzle: indoor
    - below 20°C: indoor
    - 25°C or above and clear or sunny: outdoor
    - 20°C up to 25°C: outdoor
    - anything else: indoor
    """
    condition = weather.condition.lower()
    temperature = weather.temperature_c
    description = weather.description or condition

    if any(word in condition for word in BAD_WEATHER_WORDS):
        recommendation, reason = "indoor", f"Due to {description}, we recommend indoor seating for your comfort."
    elif temperature < 20:
        recommendation = "indoor"
        reason = f"With a temperature of {temperature:g}°C, indoor seating will be more comfortable."
    elif temperature >= 25 and ("clear" in condition or "sun" in condition):
        recommendation = "outdoor"
        reason = f"Beautiful {description} with {temperature:g}°C, perfect for outdoor dining!"
    elif temperature < 25:
        recommendation = "outdoor"
        reason = f"Pleasant {description} at {temperature:g}°C, outdoor seating recommended."
    else:
        recommendation, reason = "indoor", "Indoor seating recommended for your comfort."

    return SeatingAdvisory(
        condition=weather.condition,
        temperature_c=temperature,
        description=description,
        recommendation=recommendation,
        reason=reason,
        source="weather",
    )


def neutral_advisory() -> SeatingAdvisory:
    """Advisory used whenever the weather lookup fails"""
    return SeatingAdvisory(
        condition="unknown",
        temperature_c=None,
        description="",
        recommendation="indoor",
        reason="Weather information is not available right now, so we have noted indoor seating.",
        source="default",
    )


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code >= 500


class WeatherAdvisoryClient:
    """OpenWeatherMap-backed seating advisory collaborator"""

    def __init__(
        self,
        config: Optional[WeatherConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        today: Optional[Callable[[], dt.date]] = None
    ):
        self.config = config or WeatherConfig()
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_seconds),
            headers={"Accept": "application/json"},
        )
        self._today = today or dt.date.today

    async def recommend(self, location: Optional[str], booking_date: dt.date) -> SeatingAdvisory:
        """Seating recommendation for the location on the booking date"""
        if not self.config.api_key:
            raise AdvisoryUnavailableError("Weather API key is not configured")

        location = location or self.config.default_location
        try:
            weather = await self.get_weather_for_date(location, booking_date)
        except httpx.HTTPStatusError as e:
            logger.warning(
                "weather_lookup_failed",
                location=location,
                status_code=e.response.status_code,
            )
            raise AdvisoryUnavailableError(
                "Weather service returned an error",
                details={"status_code": e.response.status_code}
            ) from e
        except httpx.HTTPError as e:
            logger.warning("weather_lookup_failed", location=location, error=str(e))
            raise AdvisoryUnavailableError("Weather service unreachable", details={"error": str(e)}) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("weather_response_invalid", location=location, error=str(e))
            raise AdvisoryUnavailableError("Weather response could not be parsed") from e

        advisory = recommend_seating(weather)
        logger.info(
            "weather_advisory_ready",
            location=location,
            date=booking_date.isoformat(),
            condition=weather.condition,
            temperature_c=weather.temperature_c,
            recommendation=advisory.recommendation,
        )
        return advisory

    async def get_weather_for_date(self, location: str, booking_date: dt.date) -> WeatherInfo:
        """Forecast within the forecast window, current weather as an approximation beyond it"""
        days_ahead = (booking_date - self._today()).days
        if 0 <= days_ahead <= self.config.forecast_days:
            return await self._get_forecast_weather(location, booking_date)
        return await self._get_current_weather(location)

    async def _get(self, path: str, location: str) -> Dict[str, Any]:
        params = {"q": location, "appid": self.config.api_key, "units": "metric"}
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential_jitter(initial=0.2, max=2),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                response = await self.http_client.get(f"{self.config.base_url}/{path}", params=params)
                response.raise_for_status()
                return response.json()

    @staticmethod
    def _weather_from_entry(entry: Dict[str, Any]) -> WeatherInfo:
        return WeatherInfo(
            condition=entry["weather"][0]["main"],
            temperature_c=round(float(entry["main"]["temp"])),
            description=entry["weather"][0].get("description", ""),
            humidity=entry["main"].get("humidity"),
            wind_speed=(entry.get("wind") or {}).get("speed"),
        )

    async def _get_current_weather(self, location: str) -> WeatherInfo:
        data = await self._get("weather", location)
        return self._weather_from_entry(data)

    async def _get_forecast_weather(self, location: str, booking_date: dt.date) -> WeatherInfo:
        data = await self._get("forecast", location)
        forecasts = data["list"]
        target = dt.datetime.combine(booking_date, dt.time(12, 0), tzinfo=dt.timezone.utc).timestamp()
        closest = min(forecasts, key=lambda entry: abs(entry["dt"] - target))
        return self._weather_from_entry(closest)

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
