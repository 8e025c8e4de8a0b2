"""
KML parsing.

Walks Document/Folder nesting recursively and emits one Placemark per
<Placemark>, carrying the ordered folder path it was found under.

Tag matching ignores namespaces: exports come as KML 2.2, with Google's gx:
extensions, or with no namespace at all.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

from core.exceptions import FormatError
from services.spot_import.placemark import (
    DEFAULT_PLACEMARK_NAME,
    Placemark,
    PlacemarkOrigin,
    extract_image_urls,
    parse_coordinate_pair,
)

logger = logging.getLogger(__name__)

CONTAINER_TAGS = {"Document", "Folder"}

ADDRESS_DATA_KEYS = ("address", "location", "street", "addr", "adres", "adresse", "direccion", "indirizzo")

_DESCRIPTION_ADDRESS_RES = [
    re.compile(r"address\s*:\s*([^\n<]+)", re.IGNORECASE),
    re.compile(r"location\s*:\s*([^\n<]+)", re.IGNORECASE),
    re.compile(r"addr\s*:\s*([^\n<]+)", re.IGNORECASE),
    re.compile(r"where\s*:\s*([^\n<]+)", re.IGNORECASE),
]

# House number + street word, e.g. "12 Main Street" or "Rue de la Paix 5".
_STREET_WORDS = (
    r"street|st\.?|road|rd\.?|avenue|ave\.?|boulevard|blvd\.?|lane|ln\.?|drive|dr\.?|way|place|pl\.?|"
    r"square|sq\.?|court|ct\.?|rue|strasse|straße|str\.?|calle|via|avenida|straat|weg|laan|plein"
)
_STREET_ADDRESS_RE = re.compile(
    rf"(\b\d+[a-z]?\s+(?:[\w'.-]+\s+)*?(?:{_STREET_WORDS})\b)|(\b(?:{_STREET_WORDS})\s+(?:[\w'.-]+\s+)*?\d+[a-z]?\b)",
    re.IGNORECASE,
)


def _local(tag: str) -> str:
    """Strip any '{namespace}' prefix from an element tag."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _child(elem: ET.Element, name: str) -> Optional[ET.Element]:
    for c in elem:
        if _local(c.tag) == name:
            return c
    return None


def _child_text(elem: ET.Element, name: str) -> Optional[str]:
    c = _child(elem, name)
    if c is None or c.text is None:
        return None
    text = c.text.strip()
    return text or None


def _find_descendant(elem: ET.Element, name: str) -> Optional[ET.Element]:
    for d in elem.iter():
        if d is not elem and _local(d.tag) == name:
            return d
    return None


def _parse_point(pm_elem: ET.Element) -> tuple[Optional[float], Optional[float]]:
    point = _find_descendant(pm_elem, "Point")
    if point is None:
        return (None, None)
    coords_elem = _find_descendant(point, "coordinates")
    if coords_elem is None or not coords_elem.text:
        return (None, None)
    # "lng,lat[,alt]"; the first tuple wins if several are present.
    first = coords_elem.text.strip().split()[0] if coords_elem.text.strip() else ""
    parts = first.split(",")
    if len(parts) < 2:
        return (None, None)
    return parse_coordinate_pair(parts[1], parts[0])


def _parse_extended_data(pm_elem: ET.Element) -> Dict[str, str]:
    data: Dict[str, str] = {}
    ext = _child(pm_elem, "ExtendedData")
    if ext is None:
        return data
    for elem in ext.iter():
        tag = _local(elem.tag)
        if tag == "Data":
            key = elem.get("name")
            value = _child_text(elem, "value")
            if key and value is not None:
                data[key] = value
        elif tag == "SimpleData":
            key = elem.get("name")
            value = (elem.text or "").strip()
            if key and value:
                data[key] = value
    return data


def _address_from_extended_data(extended: Dict[str, str]) -> Optional[str]:
    lowered = {k.strip().lower(): v for k, v in extended.items()}
    for key in ADDRESS_DATA_KEYS:
        value = (lowered.get(key) or "").strip()
        if value:
            return value
    return None


def _address_from_description(description: str) -> Optional[str]:
    if not description:
        return None
    for pattern in _DESCRIPTION_ADDRESS_RES:
        m = pattern.search(description)
        if m:
            value = m.group(1).strip()
            if value:
                return value
    return None


def looks_like_street_address(name: Optional[str]) -> bool:
    if not name:
        return False
    return _STREET_ADDRESS_RE.search(name) is not None


def _find_address(pm_elem: ET.Element, name: str, description: str, extended: Dict[str, str]) -> Optional[str]:
    """Address lookup order: <address>, extended data, description patterns, street-like name."""
    address = _child_text(pm_elem, "address")
    if address:
        return address
    address = _address_from_extended_data(extended)
    if address:
        return address
    address = _address_from_description(description)
    if address:
        return address
    if looks_like_street_address(name):
        return name
    return None


def _parse_placemark(pm_elem: ET.Element, folder_path: List[str]) -> Optional[Placemark]:
    name = _child_text(pm_elem, "name") or DEFAULT_PLACEMARK_NAME
    description_elem = _child(pm_elem, "description")
    description = (description_elem.text or "").strip() if description_elem is not None else ""
    extended = _parse_extended_data(pm_elem)

    image_urls = extract_image_urls(description, [extended.get("gx_media_links", "")])

    lat, lng = _parse_point(pm_elem)
    placemark = Placemark(
        name=name,
        origin=PlacemarkOrigin.KML,
        description=description,
        latitude=lat,
        longitude=lng,
        folder_path=list(folder_path),
        image_urls=image_urls,
        extended_data=extended,
    )
    if placemark.has_coordinates:
        return placemark

    address = _find_address(pm_elem, name, description, extended)
    if not address:
        logger.debug(f"Dropping KML placemark without coordinates or address: {name!r}")
        return None
    placemark.address = address
    return placemark


def _walk(elem: ET.Element, folder_path: List[str], out: List[Placemark]) -> None:
    for child in elem:
        tag = _local(child.tag)
        if tag == "Placemark":
            pm = _parse_placemark(child, folder_path)
            if pm is not None:
                out.append(pm)
        elif tag == "Folder":
            folder_name = _child_text(child, "name")
            _walk(child, folder_path + [folder_name] if folder_name else folder_path, out)
        elif tag in CONTAINER_TAGS:
            # Documents do not contribute to the folder path.
            _walk(child, folder_path, out)


def parse_kml(data: bytes) -> List[Placemark]:
    """
    Parse a KML document into placemarks, in document order.

    Args:
        data: Raw KML bytes (already extracted from a KMZ if needed)

    Returns:
        Placemarks that have coordinates or a resolvable address.

    Raises:
        FormatError: if the markup cannot be parsed
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise FormatError(f"invalid_kml: {e}") from e

    placemarks: List[Placemark] = []
    if _local(root.tag) == "Placemark":
        pm = _parse_placemark(root, [])
        if pm is not None:
            placemarks.append(pm)
    else:
        _walk(root, [], placemarks)
    return placemarks
