"""
Theme resolution for the daily contest.

The active theme is the row dated today (reference timezone) with its active
flag set. During the quiet window before the daily reveal nothing is shown,
even when such a row exists.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from . import dates
from .schemas import DrawingWithRelations, ThemeOut, UserSummary

LATE_THEMES_LIMIT = 30


@dataclass
class Resolution:
    status: str  # active, quiet, none
    theme: Optional[ThemeOut] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class ThemeResolver:
    def __init__(
        self,
        timezone: str = "Europe/Paris",
        quiet_start_hour: int = 0,
        quiet_end_hour: int = 6,
        clock: dates.Clock = dates.system_clock,
    ):
        self.tz = ZoneInfo(timezone)
        self.quiet_start_hour = quiet_start_hour
        self.quiet_end_hour = quiet_end_hour
        self.clock = clock

    def now(self) -> datetime:
        return dates.local_now(self.clock(), self.tz)

    def today(self) -> date:
        return self.now().date()

    def in_quiet_window(self, now: Optional[datetime] = None) -> bool:
        hour = dates.local_now(now or self.clock(), self.tz).hour
        start, end = self.quiet_start_hour, self.quiet_end_hour
        if start <= end:
            return start <= hour < end
        # window wraps past midnight, e.g. 22 to 6
        return hour >= start or hour < end

    def resolve(self, candidates: Iterable[ThemeOut], now: Optional[datetime] = None) -> Resolution:
        now = now or self.clock()
        if self.in_quiet_window(now):
            return Resolution("quiet")
        today = dates.local_now(now, self.tz).date()
        for theme in candidates:
            if theme.date == today and theme.is_active:
                return Resolution("active", theme)
        return Resolution("none")

    def seconds_left(self, now: Optional[datetime] = None) -> int:
        """Countdown to the reference-timezone midnight closing today's contest."""
        now = dates.as_utc(now or self.clock())
        deadline = dates.end_of_day(dates.local_now(now, self.tz).date(), self.tz)
        return max(0, int((deadline - now).total_seconds()))

    def deadline_passed(self, theme: ThemeOut, now: Optional[datetime] = None) -> bool:
        now = dates.as_utc(now or self.clock())
        return now >= dates.end_of_day(theme.date, self.tz)

    def late_eligible(
        self,
        themes: Iterable[ThemeOut],
        submitted_theme_ids: Iterable[str],
        limit: int = LATE_THEMES_LIMIT,
    ) -> list[ThemeOut]:
        """Active themes up to today the user has not drawn for, newest first."""
        today = self.today()
        submitted = set(submitted_theme_ids)
        recent = sorted(
            (t for t in themes if t.is_active and t.date <= today),
            key=lambda t: t.date,
            reverse=True,
        )[:limit]
        return [t for t in recent if t.id not in submitted]


def status_message(resolution: Resolution, quiet_end_hour: int = 6) -> str:
    if resolution.status == "quiet":
        return f"See you at {quiet_end_hour}:00 for a new theme!"
    if resolution.status == "none":
        return "No theme is set for today. Come back tomorrow!"
    return "You have until midnight to upload your drawing!"


def participants(drawings: Iterable[DrawingWithRelations]) -> list[UserSummary]:
    """Distinct authors in submission order."""
    seen = set()
    users = []
    for drawing in drawings:
        user = drawing.user
        if user is None or user.id in seen:
            continue
        seen.add(user.id)
        users.append(user)
    return users
