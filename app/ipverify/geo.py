from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoInfo:
    city: str | None = None
    region: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    isp: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_float(v: Any) -> float | None:
    try:
        return float(v) if v is not None else None
    except (TypeError, ValueError):
        return None


def _as_text(v: Any, limit: int = 128) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s[:limit] or None


def parse_ipwhois(payload: dict[str, Any]) -> GeoInfo | None:
    """ipwho.is response -> GeoInfo. `success: false` means the address is unknown/private."""
    if not isinstance(payload, dict) or payload.get("success") is False:
        return None
    connection = payload.get("connection") or {}
    return GeoInfo(
        city=_as_text(payload.get("city")),
        region=_as_text(payload.get("region")),
        country=_as_text(payload.get("country")),
        latitude=_as_float(payload.get("latitude")),
        longitude=_as_float(payload.get("longitude")),
        isp=_as_text(connection.get("isp") if isinstance(connection, dict) else None, 255),
    )


@dataclass(frozen=True)
class GeoLookupClient:
    base_url: str = "https://ipwho.is"
    timeout_seconds: int = 5

    def lookup(self, ip: str) -> GeoInfo | None:
        """Best-effort enrichment; any failure means "no enrichment available"."""
        url = self.base_url.rstrip("/") + "/" + urllib.parse.quote(ip)
        req = urllib.request.Request(url, method="GET")
        req.add_header("Accept", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
            return parse_ipwhois(json.loads(raw.decode("utf-8")))
        except urllib.error.HTTPError as e:
            logger.warning("Geo lookup HTTP %s for ip=%s", e.code, ip)
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            logger.warning("Geo lookup failed for ip=%s: %s", ip, e)
        except ValueError as e:
            logger.warning("Geo lookup returned invalid JSON for ip=%s: %s", ip, e)
        return None


def geo_client_from_config(config: dict) -> GeoLookupClient | None:
    if not config.get("GEO_LOOKUP_ENABLED"):
        return None
    return GeoLookupClient(
        base_url=(config.get("GEO_LOOKUP_URL") or "https://ipwho.is").strip(),
        timeout_seconds=int(config.get("GEO_LOOKUP_TIMEOUT") or 5),
    )
