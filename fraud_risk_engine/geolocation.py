from __future__ import annotations

import ipaddress
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

import httpx

from .config import geolocation_base_url
from .models import GeoLocation, LoginEvent

logger = logging.getLogger(__name__)

_FIELDS = "status,country,countryCode,city,lat,lon"


def _is_public(ip: str) -> bool:
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False


class GeoLocator:
    """Resolves IP addresses to locations through an ip-api compatible endpoint.

    Any failure yields ``None``: an unknown location is never an error.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: httpx.Client | None = None,
        timeout: float = 5.0,
    ):
        self.base_url = (base_url or geolocation_base_url()).rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def lookup(self, ip: str) -> Optional[GeoLocation]:
        if not ip or not _is_public(ip):
            return None
        try:
            response = self.client.get(f"{self.base_url}/{ip}", params={"fields": _FIELDS})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Geolocation lookup failed for %s: %s", ip, exc)
            return None

        if data.get("status") == "fail" or not data.get("country"):
            return None
        return GeoLocation(
            city=data.get("city") or "",
            country=data["country"],
            lat=data.get("lat"),
            lon=data.get("lon"),
        )

    def close(self) -> None:
        self.client.close()


def resolve_locations(events: Sequence[LoginEvent], locator: Optional[GeoLocator]) -> List[LoginEvent]:
    """Attach locations to events that lack one, looking each IP up at most once."""
    if locator is None:
        return list(events)
    memo: Dict[str, Optional[GeoLocation]] = {}
    resolved: List[LoginEvent] = []
    for event in events:
        if event.location is not None:
            resolved.append(event)
            continue
        if event.ip_address not in memo:
            memo[event.ip_address] = locator.lookup(event.ip_address)
        location = memo[event.ip_address]
        resolved.append(replace(event, location=location) if location else event)
    return resolved
