from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import ProviderRequestError
from .http_provider import HttpProvider, error_for_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeocodeMatch:
    confidence: int
    house_number: str = ""
    road: str = ""
    city: str = ""
    state: str = ""
    state_code: str = ""
    postcode: str = ""
    country: str = ""
    country_code: str = ""
    formatted: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None


def _text(components: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = components.get(key)
        if value:
            return str(value).strip()
    return ""


def parse_geocode_result(result: Dict[str, Any]) -> GeocodeMatch:
    components = result.get("components") or {}
    geometry = result.get("geometry") or {}
    return GeocodeMatch(
        confidence=int(result.get("confidence") or 0),
        house_number=_text(components, "house_number"),
        road=_text(components, "road", "street"),
        city=_text(components, "city", "town", "village"),
        state=_text(components, "state", "province"),
        state_code=_text(components, "state_code"),
        postcode=_text(components, "postcode", "postal_code"),
        country=_text(components, "country"),
        country_code=_text(components, "country_code").upper(),
        formatted=str(result.get("formatted") or ""),
        latitude=geometry.get("lat"),
        longitude=geometry.get("lng"),
    )


class OpenCageClient(HttpProvider):
    """Forward geocoding against the OpenCage API."""

    async def geocode(
        self,
        query: str,
        country_code: Optional[str] = None,
        bounds: Optional[str] = None,
        timeout_ms: Optional[float] = None,
        limit: int = 1,
    ) -> Optional[GeocodeMatch]:
        params: Dict[str, Any] = {
            "q": query,
            "key": self.config.api_key,
            "language": "en",
            "limit": limit,
            "no_annotations": 1,
            "abbrv": 1,
        }
        if country_code:
            params["countrycode"] = country_code.lower()
        if bounds:
            params["bounds"] = bounds

        data = await self.get_json("/geocode/v1/json", params, timeout_ms)
        status = data.get("status") or {}
        code = int(status.get("code") or 200)
        if code != 200:
            raise error_for_status(self.name, code, str(status.get("message") or ""))
        results = data.get("results")
        if results is None:
            raise ProviderRequestError(self.name, "results missing from response")
        if not results:
            logger.debug("OpenCage returned no results")
            return None
        return parse_geocode_result(results[0])
