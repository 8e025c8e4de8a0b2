"""
Export format detection.

Feeds frequently omit file extensions (uMap, Google My Maps "kml?mid=..."
links), so the URL is only a hint and the payload itself decides when the URL
says nothing useful.
"""

from typing import Literal, Optional
from urllib.parse import urlparse

ExportFormat = Literal["kmz", "kml", "geojson"]

ZIP_SIGNATURE = b"PK\x03\x04"

_EXTENSION_FORMATS = {
    ".kmz": "kmz",
    ".kml": "kml",
    ".geojson": "geojson",
    ".json": "geojson",
}


def _format_from_url(url_hint: Optional[str]) -> Optional[ExportFormat]:
    if not url_hint:
        return None
    path = urlparse(url_hint).path.lower().rstrip("/")
    for ext, fmt in _EXTENSION_FORMATS.items():
        if path.endswith(ext):
            return fmt
    return None


def detect_format(data: bytes, url_hint: Optional[str] = None) -> ExportFormat:
    """
    Classify an export payload.

    Precedence:
    1. ZIP signature => kmz (a zip is never valid KML/JSON, whatever the URL says)
    2. URL path extension
    3. First non-whitespace character: '<' => kml, '{' / '[' => geojson
    4. geojson
    """
    if data[:4] == ZIP_SIGNATURE:
        return "kmz"

    from_url = _format_from_url(url_hint)
    # A ".kmz" URL serving plain text (e.g. forcekml=1 exports) is sniffed instead.
    if from_url and from_url != "kmz":
        return from_url

    head = data[:1024].lstrip(b"\xef\xbb\xbf").lstrip()
    if head.startswith(b"<"):
        return "kml"
    if head.startswith((b"{", b"[")):
        return "geojson"
    return "geojson"
