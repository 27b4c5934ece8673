from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class RoutingError(RuntimeError):
    pass


@dataclass(frozen=True)
class RouteClient:
    """OpenRouteService driving directions. Points are (lat, lng) in and out."""

    api_key: str
    base_url: str = "https://api.openrouteservice.org"
    profile: str = "driving-car"
    timeout_seconds: int = 20

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        req = urllib.request.Request(url, data=json.dumps(body).encode("utf-8"), method="POST")
        req.add_header("Authorization", self.api_key)
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json, application/geo+json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                detail = e.read().decode("utf-8", errors="ignore")
            except OSError:
                detail = ""
            logger.warning("Routing request failed status=%s", e.code)
            raise RoutingError(f"HTTP {e.code} from routing service: {detail[:300]}") from e
        except (urllib.error.URLError, TimeoutError) as e:
            logger.warning("Routing service unreachable: %s", e)
            raise RoutingError("Routing service unreachable.") from e
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise RoutingError("Invalid JSON from routing service.") from e

    def route(self, start: tuple[float, float], end: tuple[float, float]) -> dict[str, Any]:
        if not self.api_key:
            raise RoutingError("Routing is not configured.")
        body = {"coordinates": [[start[1], start[0]], [end[1], end[0]]]}
        data = self._post(f"/v2/directions/{self.profile}/geojson", body)
        return parse_route(data)


def parse_route(data: dict[str, Any]) -> dict[str, Any]:
    """GeoJSON response -> {coordinates: [[lat, lng], ...], distance km, duration minutes}."""
    features = data.get("features") or []
    if not features:
        raise RoutingError("No route found.")
    feature = features[0]
    coords = (feature.get("geometry") or {}).get("coordinates") or []
    summary = (feature.get("properties") or {}).get("summary") or {}
    return {
        "coordinates": [[c[1], c[0]] for c in coords],
        "distance": round(float(summary.get("distance") or 0) / 1000, 1),
        "duration": round(float(summary.get("duration") or 0) / 60),
    }


def route_client_from_config(config: dict) -> RouteClient:
    return RouteClient(api_key=(config.get("OPENROUTESERVICE_API_KEY") or "").strip())
