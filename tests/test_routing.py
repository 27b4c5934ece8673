import pytest

from app.fooddash.modules.orders.routing import RouteClient, RoutingError, parse_route, route_client_from_config

GEOJSON = {
    "features": [
        {
            "geometry": {"coordinates": [[15.2832, -4.2634], [15.2901, -4.2700], [15.3005, -4.2811]]},
            "properties": {"summary": {"distance": 3456.0, "duration": 545.0}},
        }
    ]
}


def test_parse_route_swaps_to_lat_lng_and_rounds():
    out = parse_route(GEOJSON)
    assert out["coordinates"][0] == [-4.2634, 15.2832]
    assert len(out["coordinates"]) == 3
    assert out["distance"] == 3.5
    assert out["duration"] == 9


def test_parse_route_without_features():
    with pytest.raises(RoutingError):
        parse_route({"features": []})
    with pytest.raises(RoutingError):
        parse_route({})


def test_unconfigured_client_refuses():
    client = route_client_from_config({"OPENROUTESERVICE_API_KEY": "  "})
    with pytest.raises(RoutingError, match="not configured"):
        client.route((-4.26, 15.28), (-4.28, 15.30))


def test_route_sends_lng_lat(monkeypatch):
    seen = {}

    def fake_post(self, path, body):
        seen["path"] = path
        seen["body"] = body
        return GEOJSON

    monkeypatch.setattr(RouteClient, "_post", fake_post)
    out = RouteClient(api_key="k").route((-4.26, 15.28), (-4.28, 15.30))
    assert seen["path"] == "/v2/directions/driving-car/geojson"
    assert seen["body"] == {"coordinates": [[15.28, -4.26], [15.30, -4.28]]}
    assert out["distance"] == 3.5
