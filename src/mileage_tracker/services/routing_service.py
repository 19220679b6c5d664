"""Route estimates and address geocoding over HTTP (OSRM and Nominatim)."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import List, Optional, Protocol

import httpx

from mileage_tracker.models.data_records import (
    Coordinate,
    DestinationSource,
    ResolvedDestination,
    RouteEstimate,
)
from mileage_tracker.services.errors import GeocodingError, RouteUnavailableError
from mileage_tracker.utils.geo import distance_meters

logger = logging.getLogger(__name__)

USER_AGENT = "mileage-tracker/0.1.0"


class RoutingProvider(Protocol):
    """Anything that can estimate a driving route between two coordinates."""

    async def route(self, start: Coordinate, end: Coordinate) -> RouteEstimate: ...


def straight_line_estimate(start: Coordinate, end: Coordinate) -> RouteEstimate:
    """Fallback estimate: great-circle distance, no travel time."""
    return RouteEstimate(
        distance_m=distance_meters(start, end),
        travel_time_secs=0.0,
        start=start,
        end=end,
        polyline=[start, end],
        was_calculated=False,
    )


class OsrmRoutingProvider:
    """
    Driving routes from an OSRM server.

    Uses ``GET /route/v1/driving/{lon},{lat};{lon},{lat}`` with GeoJSON
    geometry. Any transport or server failure surfaces as
    RouteUnavailableError.
    """

    def __init__(
        self,
        base_url: str = "https://router.project-osrm.org",
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def route(self, start: Coordinate, end: Coordinate) -> RouteEstimate:
        url = (
            f"{self._base_url}/route/v1/driving/"
            f"{start.longitude:.6f},{start.latitude:.6f};{end.longitude:.6f},{end.latitude:.6f}"
        )
        params = {"overview": "full", "geometries": "geojson", "alternatives": "false"}

        try:
            data = await self._get_json(url, params)
        except httpx.HTTPError as e:
            raise RouteUnavailableError(f"Routing request failed: {e}") from e
        except ValueError as e:
            raise RouteUnavailableError(f"Routing response is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise RouteUnavailableError("Malformed routing response")
        if data.get("code") != "Ok" or not data.get("routes"):
            logger.info("OSRM returned no route: %s", data.get("message", data.get("code")))
            raise RouteUnavailableError(f"No route found ({data.get('code', 'unknown')})")

        try:
            route = data["routes"][0]
            return RouteEstimate(
                distance_m=float(route["distance"]),
                travel_time_secs=float(route["duration"]),
                start=start,
                end=end,
                polyline=_parse_geometry(route.get("geometry")),
                was_calculated=True,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RouteUnavailableError(f"Malformed routing response: {e}") from e

    async def _get_json(self, url: str, params: dict) -> dict:
        headers = {"User-Agent": USER_AGENT}
        if self._client is not None:
            response = await self._client.get(url, params=params, headers=headers, timeout=self._timeout)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response.json()


def _parse_geometry(geometry: Optional[dict]) -> List[Coordinate]:
    """GeoJSON LineString ([lon, lat] pairs) to coordinates."""
    if not geometry:
        return []
    if not isinstance(geometry, dict):
        raise TypeError(f"expected GeoJSON geometry, got {type(geometry).__name__}")
    return [Coordinate(latitude=float(lat), longitude=float(lon)) for lon, lat in geometry.get("coordinates", [])]


class NominatimGeocoder:
    """
    Forward geocoding of free-text addresses via Nominatim.

    Keeps a small FIFO cache of recent lookups. Please respect the public
    service's usage policy (one request per second, descriptive User-Agent).
    """

    MAX_CACHE_SIZE = 20

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
        country_codes: Optional[str] = "ca",
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._country_codes = country_codes
        self._cache: "OrderedDict[str, ResolvedDestination]" = OrderedDict()

    async def geocode(self, address: str) -> ResolvedDestination:
        """
        Resolve an address to a destination.

        Raises:
            GeocodingError: empty address, no results, or request failure
        """
        query = address.strip()
        if not query:
            raise GeocodingError("Please enter a valid address.")

        cached = self._cache.get(query)
        if cached is not None:
            logger.debug("Geocode cache hit: %s", query)
            return cached

        params = {"q": query, "format": "jsonv2", "limit": "1", "addressdetails": "0"}
        if self._country_codes:
            params["countrycodes"] = self._country_codes

        try:
            results = await self._get_json(f"{self._base_url}/search", params)
        except httpx.HTTPError as e:
            raise GeocodingError(f"Network error: {e}") from e
        except ValueError as e:
            raise GeocodingError(f"Unexpected response from geocoder: {e}") from e

        if not isinstance(results, list):
            raise GeocodingError("Unexpected response from geocoder.")
        if not results:
            raise GeocodingError("No results found for that address.")

        first = results[0]
        try:
            if not isinstance(first, dict):
                raise TypeError(f"expected an object, got {type(first).__name__}")
            destination = ResolvedDestination(
                name=first.get("name") or query,
                coordinate=Coordinate(latitude=float(first["lat"]), longitude=float(first["lon"])),
                source=DestinationSource.address_search(query),
                address=first.get("display_name"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingError(f"Could not find location: {e}") from e

        self._add_to_cache(query, destination)
        return destination

    def _add_to_cache(self, query: str, destination: ResolvedDestination) -> None:
        if len(self._cache) >= self.MAX_CACHE_SIZE:
            # Remove oldest entry
            self._cache.popitem(last=False)
        self._cache[query] = destination

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _get_json(self, url: str, params: dict):
        headers = {"User-Agent": USER_AGENT}
        if self._client is not None:
            response = await self._client.get(url, params=params, headers=headers, timeout=self._timeout)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response.json()
