"""
Routing / geocoding provider client.

The core only consumes ``RouteResult`` and ``PlaceCandidate``.  Transport
problems (timeouts, HTTP errors, malformed payloads) are logged and turned
into "no result" so a flaky provider can never break a booking flow.

* Routes: OSRM ``/route/v1/driving`` with GeoJSON geometry.
* Places: Nominatim ``/search``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from tripcore.domain.entities import Location, PlaceCandidate, RouteResult
from tripcore.domain.errors import ValidationError

logger = logging.getLogger(__name__)

USER_AGENT = "tripcore/1.0"


class RoutingProvider(ABC):
    @abstractmethod
    async def route(
        self, origin: Location, destination: Location
    ) -> Optional[RouteResult]: ...

    @abstractmethod
    async def geocode(self, query: str, limit: int = 5) -> list[PlaceCandidate]: ...


class NullRoutingProvider(RoutingProvider):
    """Used when routing is disabled: every lookup has no result."""

    async def route(self, origin, destination):
        return None

    async def geocode(self, query, limit=5):
        return []


class HttpRoutingProvider(RoutingProvider):
    def __init__(
        self,
        osrm_url: str,
        nominatim_url: str,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.osrm_url = osrm_url.rstrip("/")
        self.nominatim_url = nominatim_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=timeout_seconds, headers={"User-Agent": USER_AGENT}
        )

    async def route(
        self, origin: Location, destination: Location
    ) -> Optional[RouteResult]:
        coords = (
            f"{origin.longitude},{origin.latitude};"
            f"{destination.longitude},{destination.latitude}"
        )
        url = f"{self.osrm_url}/route/v1/driving/{coords}"
        try:
            resp = await self.client.get(
                url, params={"overview": "full", "geometries": "geojson"}
            )
            resp.raise_for_status()
            best = resp.json()["routes"][0]
            geometry = [
                (float(lat), float(lng))
                for lng, lat in best["geometry"]["coordinates"]
            ]
            if not geometry:
                logger.warning(
                    "Route %s -> %s came back without geometry", origin, destination
                )
                return None
            return RouteResult(
                geometry=geometry,
                distance_m=float(best["distance"]),
                duration_s=float(best["duration"]),
            )
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("Route lookup failed (%s -> %s): %s", origin, destination, exc)
            return None

    async def geocode(self, query: str, limit: int = 5) -> list[PlaceCandidate]:
        if not query.strip():
            return []
        try:
            resp = await self.client.get(
                f"{self.nominatim_url}/search",
                params={"format": "json", "q": query, "limit": limit},
            )
            resp.raise_for_status()
            candidates = [
                PlaceCandidate(
                    label=item.get("display_name", ""),
                    location=Location(float(item["lat"]), float(item["lon"])),
                    importance=float(item.get("importance") or 0.0),
                )
                for item in resp.json()
            ]
        except (
            httpx.HTTPError,
            KeyError,
            TypeError,
            ValueError,
            ValidationError,
        ) as exc:
            logger.warning("Geocode lookup failed for %r: %s", query, exc)
            return []
        return sorted(candidates, key=lambda c: c.importance, reverse=True)

    async def aclose(self) -> None:
        await self.client.aclose()
