"""Weather tool backed by the US National Weather Service.

Two free, key-less APIs are chained:
  1. Nominatim (OpenStreetMap) geocodes the city name to coordinates.
  2. api.weather.gov resolves the coordinates to a forecast office and
     returns the current forecast period.

Both require a ``User-Agent`` header.  weather.gov only covers the United
States, so international locations come back as a 404.
"""

from __future__ import annotations

import logging

import httpx
from langchain_core.tools import tool

from chatbot.config import HTTP_USER_AGENT, NOMINATIM_BASE_URL, WEATHER_GOV_BASE_URL

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 5.0


async def _geocode(client: httpx.AsyncClient, location: str) -> dict | None:
    response = await client.get(
        f"{NOMINATIM_BASE_URL}/search",
        params={"q": location, "format": "json", "limit": 1},
    )
    response.raise_for_status()
    results = response.json()
    return results[0] if results else None


async def _current_period(client: httpx.AsyncClient, lat: str, lon: str) -> dict:
    points = await client.get(f"{WEATHER_GOV_BASE_URL}/points/{lat},{lon}")
    points.raise_for_status()
    forecast_url = points.json()["properties"]["forecast"]

    forecast = await client.get(forecast_url)
    forecast.raise_for_status()
    return forecast.json()["properties"]["periods"][0]


@tool
async def get_weather(location: str) -> str:
    """Get current weather information for US cities using real-time data from the National Weather Service.

    Args:
        location: The city name to get weather for (e.g. 'New York',
                  'San Francisco', 'Chicago'). Only US cities are supported.
    """
    async with httpx.AsyncClient(
        headers={"User-Agent": HTTP_USER_AGENT},
        timeout=REQUEST_TIMEOUT_SECONDS,
    ) as client:
        try:
            place = await _geocode(client, location)
            if place is None:
                return (
                    f'Could not find location "{location}". '
                    "Please check the city name and try again."
                )
            logger.debug(
                "Geocoded %r to %s,%s (%s)",
                location, place["lat"], place["lon"], place["display_name"],
            )

            period = await _current_period(client, place["lat"], place["lon"])

        except httpx.TimeoutException:
            return "Weather API request timed out. Please try again."
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return (
                    f'Weather data not available for "{location}". Note: '
                    "api.weather.gov only covers the United States. "
                    "For international locations, please try a US city."
                )
            logger.error("Weather API error for %r: %s", location, exc)
            return f"Failed to fetch weather data: {exc}"
        except (httpx.HTTPError, KeyError, IndexError) as exc:
            logger.error("Weather lookup failed for %r: %s", location, exc)
            return f"Failed to fetch weather data: {exc}"

    return (
        f"Weather in {place['display_name']}:\n"
        f"Temperature: {period['temperature']}°{period['temperatureUnit']}\n"
        f"Condition: {period['shortForecast']}\n"
        f"Wind: {period['windSpeed']} {period['windDirection']}\n"
        f"Forecast: {period['detailedForecast']}"
    )
