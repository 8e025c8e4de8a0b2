import io
import struct
import zipfile

import pytest

from core.exceptions import FormatError
from services.spot_import.kmz import extract_kml_from_kmz


def _zip(entries):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return buf.getvalue()


def test_prefers_root_level_kml():
    data = _zip([
        ("nested/other.kml", b"<kml>nested</kml>"),
        ("doc.kml", b"<kml>root</kml>"),
    ])
    assert extract_kml_from_kmz(data) == b"<kml>root</kml>"


def test_falls_back_to_nested_kml_and_skips_macosx():
    data = _zip([
        ("__MACOSX/._doc.kml", b"resource fork"),
        ("files/doc.kml", b"<kml>nested</kml>"),
        ("images/icon.png", b"\x89PNG"),
    ])
    assert extract_kml_from_kmz(data) == b"<kml>nested</kml>"


def test_archive_without_kml_raises():
    data = _zip([("images/icon.png", b"\x89PNG")])
    with pytest.raises(FormatError) as e:
        extract_kml_from_kmz(data)
    assert "no_kml_in_kmz" in str(e.value)


def test_corrupt_archive_raises_format_error():
    with pytest.raises(FormatError):
        extract_kml_from_kmz(b"PK\x03\x04this is not really a zip")


def test_extraction_cap_blocks_oversized_kml():
    data = _zip([("doc.kml", b"<kml>" + b"x" * 5000 + b"</kml>")])
    with pytest.raises(FormatError) as e:
        extract_kml_from_kmz(data, max_extracted_bytes=1000)
    assert "kmz_extraction_exceeds_limit" in str(e.value)


def _corrupt_first_entry(data: bytes) -> bytes:
    """Flip bytes inside the first entry's deflate stream, leaving headers intact."""
    assert data[:4] == b"PK\x03\x04"
    name_len, extra_len = struct.unpack("<HH", data[26:30])
    start = 30 + name_len + extra_len
    raw = bytearray(data)
    for i in range(start + 2, start + 20):
        raw[i] ^= 0xFF
    return bytes(raw)


def test_corrupt_deflate_stream_raises_format_error():
    placemarks = b"".join(
        b"<Placemark><name>Spot %d</name></Placemark>" % i for i in range(200)
    )
    data = _corrupt_first_entry(_zip([("doc.kml", b"<kml>" + placemarks + b"</kml>")]))
    with pytest.raises(FormatError) as e:
        extract_kml_from_kmz(data)
    assert "invalid_kmz_archive" in str(e.value)
