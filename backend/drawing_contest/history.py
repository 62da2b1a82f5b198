"""
Archive views: the historical gallery grouped by day/theme, and helpers for
downloading drawings.
"""

import re
from typing import Iterable
from urllib.parse import urlparse

from .dates import utc_date, ymd
from .schemas import DrawingWithRelations, HistoryGroup

_unsafe_chars = re.compile(r"[^\w\-]+")
_extension = re.compile(r"\.([a-z0-9]+)$", re.IGNORECASE)


def group_key(drawing: DrawingWithRelations) -> str:
    if drawing.theme is not None and drawing.theme.id:
        return drawing.theme.id
    return ymd(utc_date(drawing.created_at))


def group_drawings(drawings: Iterable[DrawingWithRelations]) -> list[HistoryGroup]:
    """Partition drawings by theme (or UTC creation day when themeless).

    Drawings keep the order they were given in. Groups are sorted by display
    date, newest first; a group keeps the first non-empty theme title seen.
    """
    groups: dict[str, HistoryGroup] = {}
    for drawing in drawings:
        key = group_key(drawing)
        theme = drawing.theme
        title = theme.title if theme is not None else None
        group = groups.get(key)
        if group is None:
            display_date = theme.date if theme is not None and theme.date else utc_date(drawing.created_at)
            groups[key] = HistoryGroup(
                key=key, date=display_date, theme_title=title or None, drawings=[drawing]
            )
            continue
        group.drawings.append(drawing)
        if not group.theme_title and title:
            group.theme_title = title
    # sorted() is stable: equal dates keep first-seen order
    return sorted(groups.values(), key=lambda g: g.date, reverse=True)


def download_filename(title: str | None, image_url: str) -> str:
    ext = "jpg"
    last = urlparse(image_url).path.rsplit("/", 1)[-1]
    match = _extension.search(last)
    if match:
        ext = match.group(1).lower()
    base = _unsafe_chars.sub("_", title or "drawing")[:60]
    return f"{base}.{ext}"
