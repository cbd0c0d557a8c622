"""
Location Agent — distance and travel time from the patient to the clinic.

Uses the Google Distance Matrix API when a maps key is configured.  Any
failure (no key, HTTP error, timeout, non-OK status) falls back to the
haversine straight-line distance with an ETA at an assumed 40 km/h.
"""

from __future__ import annotations

import asyncio
import logging
import math
from urllib.parse import urlencode

import aiohttp
from pydantic import BaseModel

from medinet import settings
from medinet.gateway.session import GeoPoint

logger = logging.getLogger("gateway.agents.location")

DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
EARTH_RADIUS_KM = 6371.0
FALLBACK_SPEED_KMH = 40.0


class LocationInfo(BaseModel):
    distance_text: str
    distance_meters: int
    duration_text: str
    duration_seconds: int
    navigation_url: str
    clinic_address: str = ""
    # True when the straight-line fallback produced the figures
    estimated: bool = False


class DistanceLookupError(Exception):
    """The maps API did not produce a usable route."""


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.latitude))
        * math.cos(math.radians(b.latitude))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def navigation_url(origin: GeoPoint, destination: GeoPoint) -> str:
    query = urlencode({
        "api": 1,
        "origin": f"{origin.latitude},{origin.longitude}",
        "destination": f"{destination.latitude},{destination.longitude}",
        "travelmode": "driving",
    })
    return f"https://www.google.com/maps/dir/?{query}"


class LocationDistanceAgent:

    def __init__(
        self,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        session_factory=None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.MAPS_TIMEOUT_SECONDS
        )
        self._session_factory = session_factory or aiohttp.ClientSession

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def calculate_distance(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        clinic_address: str = "",
    ) -> LocationInfo:
        if not origin.is_valid() or not destination.is_valid():
            raise ValueError("Invalid coordinates provided")

        if self.is_configured:
            try:
                return await self._query_distance_matrix(origin, destination, clinic_address)
            except (aiohttp.ClientError, asyncio.TimeoutError, DistanceLookupError) as exc:
                logger.warning("Distance Matrix lookup failed, estimating: %s", exc)
        else:
            logger.debug("No maps API key; estimating straight-line distance")

        return self.estimate(origin, destination, clinic_address)

    async def _query_distance_matrix(
        self, origin: GeoPoint, destination: GeoPoint, clinic_address: str
    ) -> LocationInfo:
        params = {
            "origins": f"{origin.latitude},{origin.longitude}",
            "destinations": f"{destination.latitude},{destination.longitude}",
            "mode": "driving",
            "units": "metric",
            "key": self._api_key,
        }
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        async with self._session_factory(timeout=timeout) as http:
            async with http.get(DISTANCE_MATRIX_URL, params=params) as resp:
                resp.raise_for_status()
                data = await resp.json()

        if data.get("status") != "OK":
            raise DistanceLookupError(f"API status {data.get('status')}")
        try:
            element = data["rows"][0]["elements"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise DistanceLookupError("Malformed Distance Matrix response") from exc
        if element.get("status") != "OK":
            raise DistanceLookupError(f"Route status {element.get('status')}")

        info = LocationInfo(
            distance_text=element["distance"]["text"],
            distance_meters=int(element["distance"]["value"]),
            duration_text=element["duration"]["text"],
            duration_seconds=int(element["duration"]["value"]),
            navigation_url=navigation_url(origin, destination),
            clinic_address=clinic_address,
        )
        logger.info("Distance: %s, ETA %s", info.distance_text, info.duration_text)
        return info

    @staticmethod
    def estimate(
        origin: GeoPoint, destination: GeoPoint, clinic_address: str = ""
    ) -> LocationInfo:
        km = haversine_km(origin, destination)
        minutes = round(km / FALLBACK_SPEED_KMH * 60)
        return LocationInfo(
            distance_text=f"{km:.1f} km",
            distance_meters=round(km * 1000),
            duration_text=f"{minutes} min",
            duration_seconds=minutes * 60,
            navigation_url=navigation_url(origin, destination),
            clinic_address=clinic_address,
            estimated=True,
        )

    @staticmethod
    def location_summary(info: LocationInfo) -> str:
        lines = ["**Clinic Location**", ""]
        if info.clinic_address:
            lines += [f"**Address**: {info.clinic_address}", ""]
        approx = " (approx.)" if info.estimated else ""
        lines += [
            f"**Distance from your location**: {info.distance_text}{approx}",
            f"**Estimated travel time**: {info.duration_text}",
            "",
            f"[Open navigation in Google Maps]({info.navigation_url})",
        ]
        return "\n".join(lines)
