"""
Canonical placemark record shared by every export format.

KML and GeoJSON payloads are normalized into Placemark as soon as they are
parsed so the sync pipeline never branches on the shape of the source data.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional


class PlacemarkOrigin(str, Enum):
    KML = "kml"
    GEOJSON = "geojson"


DEFAULT_PLACEMARK_NAME = "Unnamed Spot"

_IMG_SRC_RE = re.compile(r"""<img[^>]+src\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
# uMap rich text embeds images as {{https://...}}
_UMAP_IMAGE_RE = re.compile(r"\{\{\s*(https?://[^}|\s]+)(?:\|[^}]*)?\s*\}\}")


@dataclass
class Placemark:
    name: str
    origin: PlacemarkOrigin
    description: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    folder_path: List[str] = field(default_factory=list)
    image_urls: List[str] = field(default_factory=list)
    extended_data: Dict[str, str] = field(default_factory=dict)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def folder_name(self) -> Optional[str]:
        """Innermost folder, used as provenance tag on the stored spot."""
        return self.folder_path[-1] if self.folder_path else None


def extract_image_urls(description: Optional[str], extra_urls: Iterable[str] = ()) -> List[str]:
    """
    Collect image URLs from an HTML/uMap description plus explicit URLs.

    Order is preserved, duplicates and non-http values are dropped.
    """
    candidates: List[str] = []
    if description:
        candidates.extend(_IMG_SRC_RE.findall(description))
        candidates.extend(_UMAP_IMAGE_RE.findall(description))
    for value in extra_urls:
        if not value:
            continue
        # gx_media_links is a space separated list
        candidates.extend(str(value).split())

    seen = set()
    out: List[str] = []
    for url in candidates:
        url = url.strip()
        if not url.lower().startswith(("http://", "https://")):
            continue
        if url in seen:
            continue
        seen.add(url)
        out.append(url)
    return out


def parse_coordinate_pair(lat, lng) -> tuple[Optional[float], Optional[float]]:
    """Coerce a lat/lng pair, returning (None, None) when either is unusable or out of range."""
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        return (None, None)
    if not (-90.0 <= lat_f <= 90.0) or not (-180.0 <= lng_f <= 180.0):
        return (None, None)
    return (lat_f, lng_f)
