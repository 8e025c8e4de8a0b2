"""
Geocoding adapter: result parsing and the never-raise contract.
"""
from unittest.mock import MagicMock

import pytest
import requests

from core.exceptions import ConfigurationError
from services.geocoding_service import GeocodingService, extract_city


def _response(payload, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    return resp


AMSTERDAM = {
    "status": "OK",
    "results": [{
        "formatted_address": "Dam 1, 1012 JS Amsterdam, Netherlands",
        "geometry": {"location": {"lat": 52.3731, "lng": 4.8926}},
        "address_components": [
            {"long_name": "1", "short_name": "1", "types": ["street_number"]},
            {"long_name": "North Holland", "short_name": "NH", "types": ["administrative_area_level_1", "political"]},
            {"long_name": "Amsterdam", "short_name": "Amsterdam", "types": ["locality", "political"]},
            {"long_name": "Netherlands", "short_name": "NL", "types": ["country", "political"]},
        ],
    }],
}


def _service(response=None, side_effect=None):
    session = MagicMock()
    if side_effect is not None:
        session.get.side_effect = side_effect
    else:
        session.get.return_value = response
    return GeocodingService(api_key="test-key", session=session), session


def test_missing_api_key_fails_fast(monkeypatch):
    from core.config import settings
    monkeypatch.setattr(settings, "GOOGLE_MAPS_API_KEY", None)
    with pytest.raises(ConfigurationError):
        GeocodingService(session=MagicMock())


def test_forward_extracts_address_city_and_country():
    svc, session = _service(_response(AMSTERDAM))
    result = svc.forward(52.3731, 4.8926)

    assert result.success is True
    assert result.address.startswith("Dam 1")
    assert result.city == "Amsterdam"
    assert result.country_code == "NL"
    params = session.get.call_args.kwargs["params"]
    assert params["latlng"] == "52.3731,4.8926"
    assert params["key"] == "test-key"


def test_reverse_returns_coordinates():
    svc, session = _service(_response(AMSTERDAM))
    result = svc.reverse("Dam 1, Amsterdam")

    assert result.success is True
    assert (result.lat, result.lng) == (52.3731, 4.8926)
    assert session.get.call_args.kwargs["params"]["address"] == "Dam 1, Amsterdam"


def test_zero_results_is_a_failure_result_not_an_exception():
    svc, _ = _service(_response({"status": "ZERO_RESULTS", "results": []}))
    result = svc.reverse("nowhere at all")
    assert result.success is False
    assert result.reason == "ZERO_RESULTS"


def test_network_error_is_a_failure_result():
    svc, _ = _service(side_effect=requests.ConnectionError("down"))
    result = svc.forward(1.0, 2.0)
    assert result.success is False
    assert result.reason.startswith("network_error")


def test_http_error_is_a_failure_result():
    svc, _ = _service(_response({}, status_code=503))
    assert svc.forward(1.0, 2.0).reason == "http_503"


def test_empty_address_skips_the_request():
    svc, session = _service(_response(AMSTERDAM))
    assert svc.reverse("   ").success is False
    session.get.assert_not_called()


def test_city_priority_falls_back_through_component_types():
    components = [
        {"long_name": "County", "types": ["administrative_area_level_2"]},
        {"long_name": "Town", "types": ["postal_town"]},
    ]
    assert extract_city(components) == "Town"
    assert extract_city([{"long_name": "Region", "types": ["administrative_area_level_1"]}]) == "Region"
    assert extract_city([]) is None
