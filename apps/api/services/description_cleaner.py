"""
Description and naming helpers for imported spots.

Map exports carry HTML descriptions (Google My Maps wraps them in CDATA with
<br> and <img> tags). Stored descriptions are plain text; images are pulled
out separately by the parser and YouTube links are kept as video ids.
"""

import re
import unicodedata
from typing import List, Optional

from bs4 import BeautifulSoup

_BLANK_LINES_RE = re.compile(r"\n\s*\n")
_YOUTUBE_ID_RE = re.compile(
    r"(?:youtube\.com/watch\?(?:[^\s\"'<>]*?&(?:amp;)?)?v=|youtu\.be/|youtube(?:-nocookie)?\.com/embed/)"
    r"([A-Za-z0-9_-]{11})",
    re.IGNORECASE,
)


def clean_description(description: Optional[str]) -> str:
    """
    Convert an HTML description to plain text.

    <br> becomes a newline, <img> is dropped, every other tag is stripped and
    entities are unescaped. Runs of blank lines collapse to one blank line.
    """
    if not description:
        return ""

    soup = BeautifulSoup(description, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for img in soup.find_all("img"):
        img.decompose()

    text = soup.get_text().replace("\xa0", " ").replace("\r\n", "\n")
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def extract_youtube_video_ids(text: Optional[str]) -> List[str]:
    """YouTube video ids linked from a description, first-seen order."""
    if not text:
        return []
    seen = set()
    ids: List[str] = []
    for video_id in _YOUTUBE_ID_RE.findall(text):
        if video_id not in seen:
            seen.add(video_id)
            ids.append(video_id)
    return ids


def slugify(value: Optional[str]) -> str:
    """
    ASCII slug for object keys and URLs.

    Accented characters fold to their base letter ("Café Zürich" -> "cafe-zurich").
    """
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    lowered = folded.lower()
    cleaned = re.sub(r"[^a-z0-9\s_-]", "", lowered)
    slug = re.sub(r"[\s_-]+", "-", cleaned)
    return slug.strip("-")
