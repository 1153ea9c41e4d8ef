"""IP and card-BIN country lookups (ip-api.com / binlist.net compatible)."""

from typing import Protocol

import httpx
import structlog

from src.shared.exceptions import DetectorUnavailable

logger = structlog.get_logger()

_PRIVATE_PREFIXES = (
    "127.", "10.", "192.168.", "172.16.", "172.17.", "172.18.", "172.19.", "172.20.",
    "172.21.", "172.22.", "172.23.", "172.24.", "172.25.", "172.26.", "172.27.",
    "172.28.", "172.29.", "172.30.", "172.31.", "::1", "fc", "fd",
)


class GeoLookup(Protocol):
    async def country_for_ip(self, ip_address: str) -> str | None: ...

    async def country_for_bin(self, card_bin: str) -> str | None: ...


def is_private_ip(ip_address: str) -> bool:
    return ip_address.startswith(_PRIVATE_PREFIXES)


class HttpGeoLookup:
    """Resolves ISO country codes over HTTP.

    Returns None for private IPs and unknown BINs. Any transport or decoding
    failure raises DetectorUnavailable so the geolocation signal degrades
    instead of failing the scan.
    """

    def __init__(
        self,
        ip_url: str = "http://ip-api.com/json/{ip}",
        bin_url: str = "https://lookup.binlist.net/{bin}",
        timeout_seconds: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._ip_url = ip_url
        self._bin_url = bin_url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def country_for_ip(self, ip_address: str) -> str | None:
        if is_private_ip(ip_address):
            return None
        try:
            response = await self._client.get(
                self._ip_url.format(ip=ip_address), params={"fields": "status,countryCode"}
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("geoip_lookup_failed", ip_address=ip_address, error=str(exc))
            raise DetectorUnavailable("geoip", str(exc)) from exc

        if data.get("status") != "success":
            raise DetectorUnavailable("geoip", f"status={data.get('status')}")
        return data.get("countryCode")

    async def country_for_bin(self, card_bin: str) -> str | None:
        bin6 = card_bin[:6]
        try:
            response = await self._client.get(
                self._bin_url.format(bin=bin6), headers={"Accept-Version": "3"}
            )
            if response.status_code == 404:
                logger.debug("bin_not_found", card_bin=bin6)
                return None
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("bin_lookup_failed", card_bin=bin6, error=str(exc))
            raise DetectorUnavailable("bin_lookup", str(exc)) from exc

        return (data.get("country") or {}).get("alpha2")

    async def aclose(self) -> None:
        await self._client.aclose()
