"""
Spot import parsers.

parse_export() is the single entry point: it detects the export format of a
downloaded payload and normalizes it into Placemark records.
"""

from dataclasses import dataclass
from typing import List, Optional

from services.spot_import.folders import distinct_folder_names, filter_and_order_by_folders
from services.spot_import.format_detection import ExportFormat, detect_format
from services.spot_import.geojson import Fetcher, parse_geojson
from services.spot_import.kml import parse_kml
from services.spot_import.kmz import extract_kml_from_kmz
from services.spot_import.placemark import Placemark, PlacemarkOrigin


@dataclass
class ParsedExport:
    format: ExportFormat
    placemarks: List[Placemark]


def parse_export(data: bytes, url: Optional[str] = None, fetch: Optional[Fetcher] = None) -> ParsedExport:
    """
    Detect and parse an export payload.

    Raises:
        FormatError: if the payload cannot be parsed in its detected format
    """
    fmt = detect_format(data, url)
    if fmt == "kmz":
        placemarks = parse_kml(extract_kml_from_kmz(data))
    elif fmt == "kml":
        placemarks = parse_kml(data)
    else:
        placemarks = parse_geojson(data, source_url=url, fetch=fetch)
    return ParsedExport(format=fmt, placemarks=placemarks)


__all__ = [
    "ParsedExport",
    "Placemark",
    "PlacemarkOrigin",
    "detect_format",
    "distinct_folder_names",
    "filter_and_order_by_folders",
    "parse_export",
]
