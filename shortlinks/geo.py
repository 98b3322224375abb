"""IP geolocation enrichment for recorded visits.

Lookups go to an ip-api.com compatible endpoint (``GET {GEO_API_URL}{ip}``)
and are cached per address. Private, loopback, link-local and unparseable
addresses are never sent out. Every failure path returns
``GeoLocation.unknown()``; nothing here raises to the caller.
"""

import ipaddress
import logging
from collections import OrderedDict

import httpx
from prometheus_client import Counter
from pydantic import BaseModel, ConfigDict

__all__ = ["GeoLocation", "GeoLocator", "is_private_ip"]

logger = logging.getLogger("shortlinks")

UNKNOWN = "Unknown"

GEO_LOOKUPS_TOTAL = Counter(
    "shortlinks_geo_lookups_total",
    "Geolocation lookups by outcome",
    ["outcome"],
)


class GeoLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str = UNKNOWN
    country_code: str = "XX"
    region: str = UNKNOWN
    city: str = UNKNOWN
    timezone: str = UNKNOWN
    isp: str = UNKNOWN
    latitude: float = 0.0
    longitude: float = 0.0

    @classmethod
    def unknown(cls) -> "GeoLocation":
        return cls()

    @classmethod
    def from_ip_api(cls, payload: dict) -> "GeoLocation":
        return cls(
            country=payload.get("country") or UNKNOWN,
            country_code=payload.get("countryCode") or "XX",
            region=payload.get("regionName") or UNKNOWN,
            city=payload.get("city") or UNKNOWN,
            timezone=payload.get("timezone") or UNKNOWN,
            isp=payload.get("isp") or UNKNOWN,
            latitude=float(payload.get("lat") or 0.0),
            longitude=float(payload.get("lon") or 0.0),
        )


def is_private_ip(ip: str | None) -> bool:
    """True for anything that should not leave the process: local ranges and junk."""
    if not ip:
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
    )


class GeoLocator:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        enabled: bool = True,
        api_url: str = "http://ip-api.com/json/",
        timeout_seconds: float = 2.0,
        cache_size: int = 10_000,
    ) -> None:
        self._enabled = enabled
        self._api_url = api_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._cache_size = cache_size
        self._cache: OrderedDict[str, GeoLocation] = OrderedDict()

    async def lookup(self, ip: str | None) -> GeoLocation:
        if not self._enabled or is_private_ip(ip):
            GEO_LOOKUPS_TOTAL.labels(outcome="skipped").inc()
            return GeoLocation.unknown()

        cached = self._cache.get(ip)
        if cached is not None:
            self._cache.move_to_end(ip)
            GEO_LOOKUPS_TOTAL.labels(outcome="cached").inc()
            return cached

        try:
            response = await self._client.get(f"{self._api_url}{ip}")
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Failed to get geolocation for IP {ip}: {exc}")
            GEO_LOOKUPS_TOTAL.labels(outcome="failed").inc()
            return GeoLocation.unknown()

        if not isinstance(payload, dict) or payload.get("status") != "success":
            GEO_LOOKUPS_TOTAL.labels(outcome="failed").inc()
            return GeoLocation.unknown()

        try:
            location = GeoLocation.from_ip_api(payload)
        except (TypeError, ValueError) as exc:
            logger.warning(f"Unexpected geolocation payload for IP {ip}: {exc}")
            GEO_LOOKUPS_TOTAL.labels(outcome="failed").inc()
            return GeoLocation.unknown()

        self._remember(ip, location)
        GEO_LOOKUPS_TOTAL.labels(outcome="resolved").inc()
        return location

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _remember(self, ip: str, location: GeoLocation) -> None:
        self._cache[ip] = location
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
