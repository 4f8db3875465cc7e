"""
Response classification: raw response headers -> normalized cache status.

Pure functions only. Missing headers come back as the UNKNOWN sentinel.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from cache_warmer.config import CacheHeaderNames

UNKNOWN = "N/A"


@dataclass(frozen=True)
class CacheClassification:
    origin_cache_status: str
    edge_cache_status: str
    edge_ray_id: str
    edge_code: str
    edge_pop_id: str
    region_tag: str


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            value = str(value).strip()
            return value or UNKNOWN
    return UNKNOWN


def parse_edge_code(ray_id: Optional[str]) -> str:
    """Trailing region code of a CDN ray id: "8a1b2c3d4e5f-SIN" -> "SIN"."""
    if not ray_id or ray_id == UNKNOWN or "-" not in ray_id:
        return UNKNOWN
    code = ray_id.rsplit("-", 1)[1].strip()
    return code or UNKNOWN


def parse_pop_id(platform_id: Optional[str]) -> str:
    """Leading POP of a platform request id: "sin1::iad1::abcd-123" -> "sin1"."""
    if not platform_id or platform_id == UNKNOWN or "::" not in platform_id:
        return UNKNOWN
    pop = platform_id.split("::", 1)[0].strip()
    return pop or UNKNOWN


def classify_response(
    headers: Mapping[str, str],
    fallback_region: str,
    header_names: Optional[CacheHeaderNames] = None,
) -> CacheClassification:
    names = header_names or CacheHeaderNames()
    ray_id = _header(headers, names.ray)
    edge_code = parse_edge_code(ray_id)
    return CacheClassification(
        origin_cache_status=_header(headers, names.origin),
        edge_cache_status=_header(headers, names.edge),
        edge_ray_id=ray_id,
        edge_code=edge_code,
        edge_pop_id=parse_pop_id(_header(headers, names.pop)),
        region_tag=edge_code if edge_code != UNKNOWN else fallback_region,
    )
