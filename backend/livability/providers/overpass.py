"""POI provider querying the public Overpass API."""

import asyncio
import logging
import time
from dataclasses import dataclass

import httpx

from livability.errors import PoiSourceError
from livability.geo import Bounds, distance_meters
from livability.providers.base import Poi, PoiSource

logger = logging.getLogger(__name__)

# Cooldown after a rate limit or server error, doubling per failure
BASE_COOLDOWN_SECONDS = 10.0
MAX_COOLDOWN_SECONDS = 60.0
MAX_COOLDOWN_WAIT_SECONDS = 5.0

# Tags probed by the cheap "any POI here?" check
EXISTENCE_KEYS = ("amenity", "shop", "leisure")


@dataclass
class ServerState:
    """Health of one Overpass mirror."""

    url: str
    cooldown_until: float = 0.0
    fail_count: int = 0
    last_success: float | None = None

    def available(self, now: float) -> bool:
        return self.cooldown_until <= now


def _split_tag(tag: str) -> tuple[str, str]:
    key, _, value = tag.partition("=")
    return key, value


def build_around_query(lat: float, lng: float, radius: float, tags: list[str] | tuple[str, ...]) -> str:
    """Overpass QL for nodes and ways within ``radius`` of a point."""
    parts = []
    for tag in tags:
        key, value = _split_tag(tag)
        parts.append(f'node["{key}"="{value}"](around:{radius:g},{lat},{lng});')
        parts.append(f'way["{key}"="{value}"](around:{radius:g},{lat},{lng});')
    return "[out:json][timeout:25];\n(\n" + "\n".join(parts) + "\n);\nout center;"


def build_bbox_query(bounds: Bounds, tags: list[str] | tuple[str, ...]) -> str:
    """Overpass QL for nodes and ways inside a bounding box."""
    bbox = f"{bounds.min_lat},{bounds.min_lng},{bounds.max_lat},{bounds.max_lng}"
    parts = []
    for tag in tags:
        key, value = _split_tag(tag)
        parts.append(f'node["{key}"="{value}"]({bbox});')
        parts.append(f'way["{key}"="{value}"]({bbox});')
    return "[out:json][timeout:60];\n(\n" + "\n".join(parts) + "\n);\nout center;"


def build_exists_query(bounds: Bounds) -> str:
    bbox = f"{bounds.min_lat},{bounds.min_lng},{bounds.max_lat},{bounds.max_lng}"
    parts = [f'node["{key}"]({bbox});' for key in EXISTENCE_KEYS]
    return "[out:json][timeout:25];\n(\n" + "\n".join(parts) + "\n);\nout ids 1;"


def extract_category(element_tags: dict[str, str], tags: list[str] | tuple[str, ...]) -> str:
    """First requested tag the element carries, else ``unknown``."""
    for tag in tags:
        key, value = _split_tag(tag)
        if element_tags.get(key) == value:
            return tag
    return "unknown"


class OverpassPoiSource(PoiSource):
    """Queries Overpass mirrors with rotation and per-mirror cooldowns."""

    name = "overpass"

    def __init__(
        self,
        urls: list[str],
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not urls:
            raise ValueError("At least one Overpass URL is required")
        self._servers = [ServerState(url=url) for url in urls]
        self._index = 0
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _next_server(self) -> ServerState:
        """Round-robin over available mirrors, else the one freed soonest."""
        now = time.monotonic()
        count = len(self._servers)
        for offset in range(count):
            idx = (self._index + offset) % count
            server = self._servers[idx]
            if server.available(now):
                self._index = (idx + 1) % count
                return server
        return min(self._servers, key=lambda s: s.cooldown_until)

    def _mark_failed(self, server: ServerState, status: int) -> None:
        server.fail_count += 1
        cooldown = min(
            BASE_COOLDOWN_SECONDS * 2 ** (server.fail_count - 1), MAX_COOLDOWN_SECONDS
        )
        server.cooldown_until = time.monotonic() + cooldown
        logger.warning(
            f"Overpass mirror {server.url} unavailable for {cooldown:.0f}s "
            f"(status: {status}, fails: {server.fail_count})"
        )

    def _mark_success(self, server: ServerState) -> None:
        server.fail_count = 0
        server.cooldown_until = 0.0
        server.last_success = time.monotonic()

    def server_status(self) -> list[dict]:
        """Availability of each mirror, for monitoring."""
        now = time.monotonic()
        return [
            {
                "url": s.url,
                "available": s.available(now),
                "cooldown_remaining": max(0, round(s.cooldown_until - now)),
                "fail_count": s.fail_count,
            }
            for s in self._servers
        ]

    async def _run_query(self, query: str) -> list[dict]:
        """POST a query, failing over between mirrors.

        Each mirror is tried up to twice. Raises :class:`PoiSourceError`
        when every attempt fails.
        """
        client = self._get_client()
        last_error: str | None = None

        for _attempt in range(len(self._servers) * 2):
            server = self._next_server()

            wait = server.cooldown_until - time.monotonic()
            if wait > 0:
                await asyncio.sleep(min(wait, MAX_COOLDOWN_WAIT_SECONDS))

            try:
                response = await client.post(
                    server.url,
                    data={"data": query},
                    timeout=self._timeout,
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                self._mark_failed(server, 0)
                last_error = f"{server.url}: {e!r}"
                continue

            if response.status_code == 429 or response.status_code >= 500:
                self._mark_failed(server, response.status_code)
                last_error = f"{server.url}: HTTP {response.status_code}"
                continue

            if response.status_code != 200:
                raise PoiSourceError(
                    f"Overpass query rejected: HTTP {response.status_code}", retryable=False
                )

            self._mark_success(server)
            try:
                return response.json().get("elements", [])
            except ValueError as e:
                raise PoiSourceError(f"Invalid Overpass response from {server.url}") from e

        raise PoiSourceError(f"All Overpass servers failed: {last_error}")

    def _to_poi(self, element: dict, tags: list[str] | tuple[str, ...]) -> Poi | None:
        lat = element.get("lat", element.get("center", {}).get("lat"))
        lng = element.get("lon", element.get("center", {}).get("lon"))
        if lat is None or lng is None:
            return None
        element_tags = element.get("tags") or {}
        return Poi(
            id=f"{element.get('type', 'node')}/{element.get('id')}",
            lat=lat,
            lng=lng,
            name=element_tags.get("name"),
            category=extract_category(element_tags, tags),
            tags=element_tags,
        )

    async def query_near(
        self, lat: float, lng: float, radius: float, tags: list[str] | tuple[str, ...]
    ) -> list[Poi]:
        if not tags:
            return []
        elements = await self._run_query(build_around_query(lat, lng, radius, tags))
        pois = []
        for element in elements:
            poi = self._to_poi(element, tags)
            if poi is None:
                continue
            distance = distance_meters(lat, lng, poi.lat, poi.lng)
            if distance <= radius:
                pois.append(poi.with_distance(distance))
        return pois

    async def query_region(self, bounds: Bounds, tags: list[str] | tuple[str, ...]) -> list[Poi]:
        if not tags:
            return []
        elements = await self._run_query(build_bbox_query(bounds, tags))
        return [poi for poi in (self._to_poi(e, tags) for e in elements) if poi is not None]

    async def exists_any(self, bounds: Bounds) -> bool:
        elements = await self._run_query(build_exists_query(bounds))
        return len(elements) > 0
