"""
KMZ archive handling.

A KMZ is a zip holding one "doc.kml" (plus icons/images). Google Earth and My
Maps put it at the root; some tools nest it and macOS adds __MACOSX/ forks.
"""

from __future__ import annotations

import io
import zipfile
import zlib
from typing import List

from core.config import settings
from core.exceptions import FormatError

ARCHIVE_METADATA_PREFIXES = ("__MACOSX/",)


def _kml_entries(zf: zipfile.ZipFile) -> List[zipfile.ZipInfo]:
    entries = []
    for info in zf.infolist():
        name = info.filename
        if info.is_dir() or not name.lower().endswith(".kml"):
            continue
        if name.startswith(ARCHIVE_METADATA_PREFIXES):
            continue
        entries.append(info)
    return entries


def extract_kml_from_kmz(data: bytes, max_extracted_bytes: int | None = None) -> bytes:
    """
    Return the raw bytes of the KML document inside a KMZ archive.

    Prefers a root-level .kml over nested ones; otherwise the first one in
    archive order. Caps the uncompressed size of the chosen entry to protect
    the worker from zip bombs.
    """
    cap = max_extracted_bytes if max_extracted_bytes is not None else settings.KMZ_MAX_EXTRACTED_BYTES
    try:
        with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
            entries = _kml_entries(zf)
            if not entries:
                raise FormatError("no_kml_in_kmz")

            root_level = [e for e in entries if "/" not in e.filename]
            chosen = root_level[0] if root_level else entries[0]

            if int(chosen.file_size or 0) > cap:
                raise FormatError("kmz_extraction_exceeds_limit")

            with zf.open(chosen, "r") as src:
                # file_size in the header can lie; read at most cap + 1 bytes.
                content = src.read(cap + 1)
            if len(content) > cap:
                raise FormatError("kmz_extraction_exceeds_limit")
            return content
    except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError, EOFError) as e:
        # Corrupt deflate streams, unsupported compression and encrypted
        # entries surface from open/read rather than as BadZipFile.
        raise FormatError(f"invalid_kmz_archive: {e}") from e
