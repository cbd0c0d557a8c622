"""
Tests for the Location Agent — Distance Matrix parsing and the
straight-line estimate used whenever the API cannot answer.
"""

import aiohttp
import pytest

from medinet.gateway.agents.location_agent import (
    LocationDistanceAgent,
    haversine_km,
    navigation_url,
)
from medinet.gateway.session import GeoPoint

LONDON = GeoPoint(latitude=51.5074, longitude=-0.1278)
HARLEY_ST = GeoPoint(latitude=51.5155, longitude=-0.1410)
PARIS = GeoPoint(latitude=48.8566, longitude=2.3522)


class _FakeResponse:
    def __init__(self, data, error=None):
        self._data = data
        self._error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def raise_for_status(self):
        if self._error is not None:
            raise self._error

    async def json(self):
        return self._data


class _FakeSession:
    """Stands in for aiohttp.ClientSession; records the request params."""

    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.requests = []

    def __call__(self, timeout=None):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def get(self, url, params=None):
        self.requests.append((url, params))
        return _FakeResponse(self.data, self.error)


def _matrix(status="OK", element_status="OK"):
    return {
        "status": status,
        "rows": [{"elements": [{
            "status": element_status,
            "distance": {"text": "1.6 km", "value": 1630},
            "duration": {"text": "8 mins", "value": 480},
        }]}],
    }


class TestHelpers:

    def test_haversine_london_paris(self):
        assert 340 < haversine_km(LONDON, PARIS) < 350

    def test_navigation_url(self):
        url = navigation_url(LONDON, HARLEY_ST)
        assert url.startswith("https://www.google.com/maps/dir/?api=1")
        assert "destination=51.5155%2C-0.141" in url


class TestCalculateDistance:

    @pytest.mark.asyncio
    async def test_distance_matrix_result(self):
        session = _FakeSession(data=_matrix())
        agent = LocationDistanceAgent(api_key="maps-key", session_factory=session)

        info = await agent.calculate_distance(LONDON, HARLEY_ST, "20 Harley Street")

        assert info.distance_text == "1.6 km"
        assert info.duration_seconds == 480
        assert info.estimated is False
        assert info.clinic_address == "20 Harley Street"
        _, params = session.requests[0]
        assert params["origins"] == "51.5074,-0.1278"
        assert params["key"] == "maps-key"

    @pytest.mark.asyncio
    async def test_no_key_estimates(self):
        session = _FakeSession(data=_matrix())
        agent = LocationDistanceAgent(api_key="", session_factory=session)

        info = await agent.calculate_distance(LONDON, PARIS)

        assert info.estimated is True
        assert info.distance_text.endswith(" km")
        assert session.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session", [
        _FakeSession(data=_matrix(status="REQUEST_DENIED")),
        _FakeSession(data=_matrix(element_status="ZERO_RESULTS")),
        _FakeSession(data={"status": "OK", "rows": []}),
        _FakeSession(data=_matrix(), error=aiohttp.ClientError("503")),
    ])
    async def test_api_failures_estimate(self, session):
        agent = LocationDistanceAgent(api_key="maps-key", session_factory=session)
        info = await agent.calculate_distance(LONDON, HARLEY_ST)
        assert info.estimated is True

    @pytest.mark.asyncio
    async def test_invalid_coordinates_raise(self):
        agent = LocationDistanceAgent(api_key="")
        with pytest.raises(ValueError):
            await agent.calculate_distance(GeoPoint(latitude=95, longitude=0), LONDON)

    def test_estimate_eta_at_forty_kmh(self):
        info = LocationDistanceAgent.estimate(LONDON, PARIS)
        km = haversine_km(LONDON, PARIS)
        assert info.duration_seconds == round(km / 40 * 60) * 60

    def test_location_summary_marks_estimates(self):
        info = LocationDistanceAgent.estimate(LONDON, HARLEY_ST, "20 Harley Street")
        summary = LocationDistanceAgent.location_summary(info)
        assert "**Address**: 20 Harley Street" in summary
        assert "(approx.)" in summary
        assert "Open navigation in Google Maps" in summary
