import pytest
import requests

from fitmatch.errors import TransportError
from fitmatch.models import Coordinates
from fitmatch.services.geocoding import NominatimGeocoder, coordinate_label


class FakeResp:
    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self._data = data

    def json(self):
        return self._data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append((url, params, headers))
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def test_search_parses_results_and_skips_malformed():
    session = FakeSession(
        FakeResp(
            200,
            [
                {"lat": "52.37", "lon": "4.89", "display_name": "Amsterdam, NL"},
                {"lat": "nope", "lon": "4.89"},
                {"display_name": "no coords"},
            ],
        )
    )
    geocoder = NominatimGeocoder("https://geo.test/", session=session, limit=5)

    results = geocoder.search(" Amsterdam ")

    assert len(results) == 1
    assert results[0].display_name == "Amsterdam, NL"
    assert results[0].coordinates == Coordinates(52.37, 4.89)
    url, params, headers = session.calls[0]
    assert url == "https://geo.test/search"
    assert params == {"q": "Amsterdam", "format": "json", "limit": 5}
    assert "User-Agent" in headers


def test_search_results_are_cached():
    session = FakeSession(FakeResp(200, [{"lat": "1", "lon": "2", "display_name": "X"}]))
    geocoder = NominatimGeocoder("https://geo.test", session=session)
    first = geocoder.search("x")
    second = geocoder.search("X")
    assert first == second
    assert len(session.calls) == 1


def test_blank_search_makes_no_request():
    session = FakeSession()
    assert NominatimGeocoder(session=session).search("  ") == []
    assert session.calls == []


def test_search_failure_raises_transport_error():
    session = FakeSession(requests.ConnectionError("down"))
    with pytest.raises(TransportError):
        NominatimGeocoder(session=session).search("Utrecht")


def test_reverse_falls_back_to_coordinates():
    coords = Coordinates(52.123456, 4.987654)
    session = FakeSession(FakeResp(503, None), FakeResp(200, {"error": "Unable to geocode"}))
    geocoder = NominatimGeocoder(session=session)

    assert geocoder.reverse(coords) == "Lat: 52.1235, Lon: 4.9877"
    assert geocoder.reverse(coords) == coordinate_label(coords)
    assert len(session.calls) == 2


def test_reverse_returns_display_name():
    session = FakeSession(FakeResp(200, {"display_name": "Vondelpark, Amsterdam"}))
    geocoder = NominatimGeocoder(session=session)
    assert geocoder.reverse(Coordinates(52.358, 4.868)) == "Vondelpark, Amsterdam"
    assert geocoder.reverse(Coordinates(52.358, 4.868)) == "Vondelpark, Amsterdam"
    assert len(session.calls) == 1


def test_default_session_comes_from_pooled_factory(monkeypatch):
    session = FakeSession(FakeResp(200, {"display_name": "Dam Square"}))
    monkeypatch.setattr(
        "fitmatch.services.geocoding.create_default_session", lambda: session
    )
    geocoder = NominatimGeocoder("https://geo.test")

    assert geocoder.reverse(Coordinates(52.37, 4.89)) == "Dam Square"
    assert session.calls[0][0] == "https://geo.test/reverse"
