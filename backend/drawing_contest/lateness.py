from datetime import date, datetime
from typing import Optional

from .dates import utc_date


def is_late(created_at: datetime, theme_date: Optional[date]) -> bool:
    """A drawing is late when its UTC creation date falls after its theme's date."""
    if theme_date is None:
        return False
    return utc_date(created_at) > theme_date
