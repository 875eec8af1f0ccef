"""
ocean_service.py — Open-Meteo weather + marine snapshot client.

Fetches the current ocean/weather state for a coordinate from two free
Open-Meteo endpoints (no API key required):

    FORECAST API  → wind_speed_10m (m/s), wind_direction_10m, pressure_msl
    MARINE API    → wave_height, ocean_current_velocity, sea_surface_temperature

Marine values are unavailable for inland or sheltered points; in that case
the ocean fields stay None and the snapshot still carries the weather
fields. A forecast failure fails the whole fetch. Neither endpoint
publishes tsunami or cyclone bulletins, so both flags default to False.

Error Handling Strategy
========================
    Network errors / HTTP 429 / HTTP 5xx
        → Retry up to 3 times with exponential backoff (1s, 2s, 4s)
    HTTP 4xx (other than 429)
        → Fail immediately (bad coordinates, bad parameters)
    Exhaustion
        → UpstreamFetchError; the orchestrator skips the location

Snapshots are cached in Redis for REDIS_SNAPSHOT_TTL seconds per
~1 km cell so that manual and scheduled runs in quick succession do not
spend extra API calls.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from hazardwatch.core.cache import cache_get, cache_set
from hazardwatch.core.errors import UpstreamFetchError
from hazardwatch.ml.models import to_float
from hazardwatch.prediction.models import ConditionsSnapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
MARINE_URL = "https://marine-api.open-meteo.com/v1/marine"

FORECAST_CURRENT_VARIABLES = ["wind_speed_10m", "wind_direction_10m", "pressure_msl"]
MARINE_CURRENT_VARIABLES = ["wave_height", "ocean_current_velocity", "sea_surface_temperature"]

KMH_TO_MS = 1 / 3.6

# Retry configuration
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds; actual wait = base * 2^attempt
REQUEST_TIMEOUT = 30.0  # seconds
SNAPSHOT_CACHE_TTL = 600


class OpenMeteoOceanClient:
    """
    Weather/ocean collaborator for the orchestrator.

    Usage:
        client = OpenMeteoOceanClient()
        snapshot = await client.fetch_conditions(13.0827, 80.2707)
        print(snapshot.wave_height, snapshot.wind_speed)
        await client.close()
    """

    def __init__(
        self,
        forecast_url: str = FORECAST_URL,
        marine_url: str = MARINE_URL,
        timeout: float = REQUEST_TIMEOUT,
        cache_enabled: bool = True,
        cache_ttl: int = SNAPSHOT_CACHE_TTL,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = RETRY_BACKOFF_BASE,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.forecast_url = forecast_url
        self.marine_url = marine_url
        self.timeout = timeout
        self.cache_enabled = cache_enabled
        self.cache_ttl = cache_ttl
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._http_client = client
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _cache_key(self, lat: float, lon: float) -> str:
        # ~1 km cells
        return f"snapshot:{lat:.2f}:{lon:.2f}"

    async def _fetch_json(self, service: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        GET JSON with retry.

        Attempt 1: immediate; then waits of base, 2×base, 4×base.
        """
        client = await self._get_client()
        last_error: str = ""

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                wait = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "%s retry %d/%d after %.1fs — %s",
                    service, attempt, self.max_retries, wait, last_error,
                )
                await self._sleep(wait)

            try:
                response = await client.get(url, params=params)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                continue

            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError as e:
                    raise UpstreamFetchError(service, f"invalid JSON: {e}") from e
            if response.status_code == 429 or response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                continue
            raise UpstreamFetchError(
                service,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status=response.status_code,
            )

        raise UpstreamFetchError(
            service,
            f"failed after {self.max_retries + 1} attempts ({last_error})",
        )

    async def fetch_conditions(self, lat: float, lon: float) -> ConditionsSnapshot:
        """Current weather + ocean state at (lat, lon)."""
        key = self._cache_key(lat, lon)
        if self.cache_enabled:
            cached = await cache_get(key)
            if cached:
                logger.debug("Redis cache HIT for snapshot %s", key)
                return ConditionsSnapshot.from_dict(cached)

        base_params = {"latitude": lat, "longitude": lon, "timezone": "UTC"}

        weather = await self._fetch_json("open-meteo-forecast", self.forecast_url, {
            **base_params,
            "current": ",".join(FORECAST_CURRENT_VARIABLES),
            "wind_speed_unit": "ms",
        })

        try:
            marine = await self._fetch_json("open-meteo-marine", self.marine_url, {
                **base_params,
                "current": ",".join(MARINE_CURRENT_VARIABLES),
            })
        except UpstreamFetchError as e:
            logger.warning(
                "Marine data unavailable for %.4f,%.4f: %s", lat, lon, e.message,
                extra={"lat": lat, "lon": lon},
            )
            marine = {}

        snapshot = self._parse(lat, lon, weather.get("current") or {}, marine.get("current") or {})

        if self.cache_enabled:
            await cache_set(key, snapshot.to_dict(), ttl=self.cache_ttl)

        logger.info(
            "Fetched conditions for %.4f,%.4f: wave=%s wind=%s",
            lat, lon, snapshot.wave_height, snapshot.wind_speed,
            extra={"lat": lat, "lon": lon},
        )
        return snapshot

    @staticmethod
    def _parse(
        lat: float,
        lon: float,
        weather: Dict[str, Any],
        marine: Dict[str, Any],
    ) -> ConditionsSnapshot:
        current_kmh = to_float(marine.get("ocean_current_velocity"))
        return ConditionsSnapshot(
            latitude=lat,
            longitude=lon,
            fetched_at=datetime.now(timezone.utc),
            wave_height=to_float(marine.get("wave_height")),
            wind_speed=to_float(weather.get("wind_speed_10m")),
            wind_direction=to_float(weather.get("wind_direction_10m")),
            pressure=to_float(weather.get("pressure_msl")),
            sea_surface_temp=to_float(marine.get("sea_surface_temperature")),
            current_speed=abs(current_kmh) * KMH_TO_MS if current_kmh is not None else None,
        )
