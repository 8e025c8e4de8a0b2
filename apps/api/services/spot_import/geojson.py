"""
GeoJSON parsing, including uMap map metadata.

Three shapes are accepted:
- FeatureCollection
- a single Feature
- uMap metadata, whose `properties.datalayers` (or top-level `datalayers`)
  name sub-resources that each hold a FeatureCollection. Every datalayer is
  fetched and parsed on its own; its declared name becomes the folder of its
  features.

Only Point geometries become placemarks.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from core.exceptions import FormatError
from services.spot_import.placemark import (
    DEFAULT_PLACEMARK_NAME,
    Placemark,
    PlacemarkOrigin,
    extract_image_urls,
    parse_coordinate_pair,
)

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], bytes]

FOLDER_PROPERTY_KEYS = ("folder", "layer", "category", "type", "group")
NAME_PROPERTY_KEYS = ("name", "title")
DESCRIPTION_PROPERTY_KEYS = ("description", "desc")
IMAGE_PROPERTY_KEYS = ("image", "images", "gx_media_links", "photo")

_UMAP_ID_FROM_URL_RES = [
    re.compile(r"/map/(\d+)"),
    re.compile(r"_(\d+)(?:/|$|\?)"),
]


def _load_json(data: bytes) -> Any:
    try:
        text = data.decode("utf-8-sig") if isinstance(data, (bytes, bytearray)) else data
        return json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise FormatError(f"invalid_geojson: {e}") from e


def _first_str(props: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = props.get(key)
        if value is None:
            continue
        if isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _image_values(props: Dict[str, Any]) -> List[str]:
    values: List[str] = []
    for key in IMAGE_PROPERTY_KEYS:
        value = props.get(key)
        if not value:
            continue
        if isinstance(value, list):
            values.extend(str(v) for v in value if v)
        else:
            values.append(str(value))
    return values


def feature_to_placemark(feature: Dict[str, Any], folder: Optional[str] = None) -> Optional[Placemark]:
    """
    Convert one GeoJSON Feature to a Placemark.

    Returns None for non-Point geometries and unusable coordinates.
    """
    if not isinstance(feature, dict):
        return None
    geometry = feature.get("geometry") or {}
    if not isinstance(geometry, dict) or geometry.get("type") != "Point":
        return None
    coords = geometry.get("coordinates") or []
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        return None
    lat, lng = parse_coordinate_pair(coords[1], coords[0])
    if lat is None:
        return None

    props = feature.get("properties") or {}
    if not isinstance(props, dict):
        props = {}

    description = _first_str(props, DESCRIPTION_PROPERTY_KEYS) or ""
    folder_name = folder or _first_str(props, FOLDER_PROPERTY_KEYS)

    return Placemark(
        name=_first_str(props, NAME_PROPERTY_KEYS) or DEFAULT_PLACEMARK_NAME,
        origin=PlacemarkOrigin.GEOJSON,
        description=description,
        latitude=lat,
        longitude=lng,
        folder_path=[folder_name] if folder_name else [],
        image_urls=extract_image_urls(description, _image_values(props)),
        extended_data={k: str(v) for k, v in props.items() if isinstance(v, (str, int, float, bool))},
    )


def _features_to_placemarks(features: Iterable[Any], folder: Optional[str] = None) -> List[Placemark]:
    out: List[Placemark] = []
    for feature in features or []:
        pm = feature_to_placemark(feature, folder=folder)
        if pm is not None:
            out.append(pm)
    return out


def _datalayers(doc: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    props = doc.get("properties")
    if isinstance(props, dict) and isinstance(props.get("datalayers"), list):
        return props["datalayers"]
    if isinstance(doc.get("datalayers"), list):
        return doc["datalayers"]
    return None


def _umap_id(doc: Dict[str, Any], source_url: Optional[str]) -> Optional[str]:
    props = doc.get("properties") if isinstance(doc.get("properties"), dict) else {}
    for value in (props.get("umap_id"), doc.get("umap_id")):
        if value not in (None, ""):
            return str(value)
    if source_url:
        path = urlparse(source_url).path
        for pattern in _UMAP_ID_FROM_URL_RES:
            m = pattern.search(path)
            if m:
                return m.group(1)
    return None


def datalayer_url(layer: Dict[str, Any], map_id: Optional[str], source_url: Optional[str]) -> Optional[str]:
    """Resolve where a uMap datalayer's features live."""
    explicit = layer.get("url")
    if explicit:
        return str(explicit)
    layer_id = layer.get("id") or layer.get("uuid")
    if not layer_id or not map_id or not source_url:
        return None
    parsed = urlparse(source_url)
    return f"{parsed.scheme}://{parsed.netloc}/datalayer/{map_id}/{layer_id}/"


def _parse_umap(doc: Dict[str, Any], layers: List[Dict[str, Any]], source_url: Optional[str],
                fetch: Optional[Fetcher]) -> List[Placemark]:
    if fetch is None:
        raise FormatError("umap_metadata_requires_fetcher")
    map_id = _umap_id(doc, source_url)
    placemarks: List[Placemark] = []
    for layer in layers:
        if not isinstance(layer, dict):
            continue
        layer_name = layer.get("name") or (layer.get("_umap_options") or {}).get("name")
        url = datalayer_url(layer, map_id, source_url)
        if not url:
            logger.warning(f"Skipping uMap datalayer without resolvable URL: {layer_name!r}")
            continue
        try:
            layer_doc = _load_json(fetch(url))
            features = layer_doc.get("features", []) if isinstance(layer_doc, dict) else []
            # Declared layer name wins; fall back to the layer document's own options.
            if not layer_name and isinstance(layer_doc, dict):
                layer_name = (layer_doc.get("_umap_options") or {}).get("name")
            placemarks.extend(_features_to_placemarks(features, folder=layer_name))
        except Exception as e:
            logger.warning(f"Skipping uMap datalayer {layer_name!r} at {url}: {e}")
            continue
    return placemarks


def parse_geojson(data: bytes, source_url: Optional[str] = None, fetch: Optional[Fetcher] = None) -> List[Placemark]:
    """
    Parse a GeoJSON / uMap payload into placemarks.

    Args:
        data: Raw JSON bytes
        source_url: URL the payload came from (used to build uMap datalayer URLs)
        fetch: Callable returning the bytes at a URL (used for uMap datalayers)

    Raises:
        FormatError: if the payload is not JSON or has no recognizable shape
    """
    doc = _load_json(data)

    if isinstance(doc, list):
        return _features_to_placemarks(doc)
    if not isinstance(doc, dict):
        raise FormatError("invalid_geojson: top-level value is not an object")

    # uMap metadata is itself a Feature (the map center), so check it first.
    layers = _datalayers(doc)
    if layers is not None:
        return _parse_umap(doc, layers, source_url, fetch)

    doc_type = doc.get("type")
    if doc_type == "FeatureCollection":
        return _features_to_placemarks(doc.get("features") or [])
    if doc_type == "Feature":
        return _features_to_placemarks([doc])

    raise FormatError(f"invalid_geojson: unsupported type {doc_type!r}")
