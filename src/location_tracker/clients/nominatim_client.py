"""OpenStreetMap Nominatim 逆地理编码客户端。

Nominatim 有公开的使用限制：请求间隔由调用方的 RateLimiter 保证，
并请设置可识别的 User-Agent。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import requests

from location_tracker.config import AppConfig
from location_tracker.domain.tracking_types import Coordinate, RawPlacemark
from location_tracker.services.geocoding_resolver import GeocodingLookupError

logger = logging.getLogger(__name__)

AREA_OF_INTEREST_KEYS = ("amenity", "tourism", "leisure", "shop", "building", "historic")
SUB_LOCALITY_KEYS = ("neighbourhood", "suburb", "quarter", "city_district")
LOCALITY_KEYS = ("city", "town", "village", "hamlet", "municipality")


@dataclass(frozen=True, slots=True)
class NominatimConfig:
    """Nominatim reverse 接口配置。"""

    base_url: str = "https://nominatim.openstreetmap.org/reverse"
    user_agent: str = "location-tracker/0.1.0 (reverse-geocode; please set your own UA)"
    accept_language: str = "en"
    zoom: int = 18
    timeout_seconds: float = 20.0

    @classmethod
    def from_app_config(cls, config: AppConfig) -> NominatimConfig:
        return cls(
            base_url=config.nominatim_url,
            user_agent=config.user_agent,
            accept_language=config.accept_language,
        )


class NominatimClient:
    """把坐标查询为 RawPlacemark；无结果返回 None，网络或服务错误抛出异常。"""

    def __init__(
        self,
        config: NominatimConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._cfg = config or NominatimConfig()
        self._session = session or requests.Session()

    async def __call__(self, coordinate: Coordinate) -> RawPlacemark | None:
        return await asyncio.to_thread(self.reverse, coordinate)

    def reverse(self, coordinate: Coordinate) -> RawPlacemark | None:
        """同步查询一次。"""

        params = {
            "format": "jsonv2",
            "lat": f"{coordinate.latitude:.8f}",
            "lon": f"{coordinate.longitude:.8f}",
            "zoom": str(self._cfg.zoom),
            "addressdetails": "1",
            "accept-language": self._cfg.accept_language,
        }
        headers = {
            "User-Agent": self._cfg.user_agent,
            "Accept": "application/json",
        }
        try:
            response = self._session.get(
                self._cfg.base_url,
                params=params,
                headers=headers,
                timeout=self._cfg.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise GeocodingLookupError(f"Nominatim request failed: {exc}") from exc
        except ValueError as exc:
            raise GeocodingLookupError("Nominatim returned invalid JSON") from exc

        if not isinstance(payload, dict) or "error" in payload:
            logger.debug("No Nominatim result for %s", coordinate)
            return None
        return placemark_from_nominatim(payload)


def placemark_from_nominatim(payload: dict[str, Any]) -> RawPlacemark:
    """Nominatim jsonv2 响应转为原始地标字段。"""

    address = payload.get("address") or {}
    if not isinstance(address, dict):
        address = {}

    areas = tuple(
        str(address[key]) for key in AREA_OF_INTEREST_KEYS if address.get(key)
    )
    return RawPlacemark(
        name=_first_text(payload.get("name")),
        thoroughfare=_first_text(address.get("road"), address.get("pedestrian")),
        sub_thoroughfare=_first_text(address.get("house_number")),
        areas_of_interest=areas,
        sub_locality=_first_text(*(address.get(key) for key in SUB_LOCALITY_KEYS)),
        locality=_first_text(*(address.get(key) for key in LOCALITY_KEYS)),
        administrative_area=_first_text(address.get("state")),
        postal_code=_first_text(address.get("postcode")),
    )


def _first_text(*values: object | None) -> str | None:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None
