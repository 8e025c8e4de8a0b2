"""Folder allow-list filtering for sources that only import some folders of a map."""

from typing import List, Optional, Sequence

from services.spot_import.placemark import Placemark


def _normalize(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def filter_and_order_by_folders(
    placemarks: Sequence[Placemark],
    include_folders: Optional[Sequence[str]],
) -> List[Placemark]:
    """
    Keep placemarks whose folder path contains a listed folder, ordered by list position.

    Matching is case-insensitive on trimmed names. A placemark is ranked by the
    first entry of include_folders that appears anywhere in its folder path;
    placemarks of the same rank keep their input order.

    An empty or missing allow-list returns the input unchanged.
    """
    wanted = [_normalize(f) for f in (include_folders or []) if _normalize(f)]
    if not wanted:
        return list(placemarks)

    ranked = []
    for position, pm in enumerate(placemarks):
        path = {_normalize(p) for p in pm.folder_path}
        for rank, folder in enumerate(wanted):
            if folder in path:
                ranked.append((rank, position, pm))
                break

    ranked.sort(key=lambda item: (item[0], item[1]))
    return [pm for _, _, pm in ranked]


def distinct_folder_names(placemarks: Sequence[Placemark]) -> List[str]:
    """Every folder name seen in the export, first-seen order."""
    seen = set()
    out: List[str] = []
    for pm in placemarks:
        for name in pm.folder_path:
            if name and name not in seen:
                seen.add(name)
                out.append(name)
    return out
