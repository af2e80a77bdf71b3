"""
Directions source — candidate routes from the Google Directions JSON API.

Usage:
    client = DirectionsClient()
    routes = await client.get_routes(origin, destination, TransportMode.WALKING)
    await client.close()

Any failure (no API key, timeout, HTTP error, provider status other than
OK / ZERO_RESULTS, malformed payload) surfaces as UpstreamUnavailable; the
scorer catches it and falls back to a direct route. Successful responses
are cached in Redis for ``ROUTE_CACHE_TTL`` seconds when caching is on.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from backend.app.core.cache import cache_get, cache_set, make_cache_key
from backend.app.core.config import settings
from backend.app.core.errors import UpstreamUnavailable, ValidationError
from backend.app.routing.models import Route, TransportMode
from backend.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)

SERVICE = "directions"


def _point(raw: Dict[str, Any]) -> Coordinate:
    return Coordinate(float(raw["lat"]), float(raw["lng"]))


def parse_directions(payload: Dict[str, Any]) -> List[Route]:
    """Map a Directions API response body onto Route values."""
    status = payload.get("status")
    if status == "ZERO_RESULTS":
        return []
    if status != "OK":
        raise UpstreamUnavailable(
            SERVICE, f"provider status {status}",
            error_message=payload.get("error_message"),
        )

    routes = []
    for raw in payload.get("routes", []):
        leg = raw["legs"][0]
        waypoints = []
        for step in leg.get("steps", []):
            start = _point(step["start_location"])
            if not waypoints or waypoints[-1] != start:
                waypoints.append(start)
            waypoints.append(_point(step["end_location"]))

        bounds = raw.get("bounds")
        routes.append(Route(
            summary=raw.get("summary", ""),
            duration_s=int(leg["duration"]["value"]),
            distance_m=int(leg["distance"]["value"]),
            bounds=(_point(bounds["southwest"]), _point(bounds["northeast"])) if bounds else None,
            waypoints=tuple(waypoints),
            polyline=raw.get("overview_polyline", {}).get("points", ""),
        ))
    return routes


class DirectionsClient:

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self.base_url = base_url or settings.DIRECTIONS_API_URL
        self.timeout = timeout or settings.ROUTING_TIMEOUT_SECONDS
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def get_routes(
        self,
        origin: Coordinate,
        destination: Coordinate,
        mode: TransportMode = TransportMode.WALKING,
    ) -> List[Route]:
        if not self.configured:
            raise UpstreamUnavailable(SERVICE, "no API key configured")

        key = make_cache_key(
            SERVICE,
            origin.latitude, origin.longitude,
            destination.latitude, destination.longitude,
            mode.value,
        )
        cached = await cache_get(key)
        if cached is not None:
            logger.debug("Redis cache HIT for directions %s", key)
            return [Route.from_dict(r) for r in cached]

        params = {
            "origin": f"{origin.latitude},{origin.longitude}",
            "destination": f"{destination.latitude},{destination.longitude}",
            "mode": mode.value,
            "alternatives": "true",
            "key": self.api_key,
        }
        client = await self._get_client()
        try:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            routes = parse_directions(response.json())
        except httpx.HTTPStatusError as e:
            logger.error("Directions API error: %s", e.response.status_code)
            raise UpstreamUnavailable(SERVICE, f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error("Directions request failed: %s", e)
            raise UpstreamUnavailable(SERVICE, str(e) or type(e).__name__)
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
            logger.error("Malformed directions response: %s", e)
            raise UpstreamUnavailable(SERVICE, "malformed response")

        if routes:
            await cache_set(key, [r.to_dict() for r in routes], ttl=settings.ROUTE_CACHE_TTL)
        return routes
