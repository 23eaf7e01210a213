"""Time-of-day gate for scheduled jobs."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from .errors import ScheduleNotDue
from .store import CurationStore
from .utils import utc_now

logger = logging.getLogger(__name__)

# app_settings keys that override the configured defaults
REVIEW_ENABLED_KEY = "review_schedule_enabled"
REVIEW_TIME_KEY = "review_time"
WINDOW_KEY = "schedule_window_minutes"


@dataclass(frozen=True)
class ScheduleConfig:
    review_enabled: bool
    review_time: str
    window_minutes: int


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


class ScheduleChecker:
    """Decides whether a scheduled job should run now, in the newsletter's local time."""

    def __init__(self, store: CurationStore, settings=None):
        self.store = store
        if settings:
            self.defaults = ScheduleConfig(
                review_enabled=settings.review_schedule_enabled,
                review_time=settings.review_time,
                window_minutes=settings.schedule_window_minutes,
            )
            self.timezone = settings.timezone
        else:
            self.defaults = ScheduleConfig(review_enabled=True, review_time="20:50", window_minutes=15)
            self.timezone = "America/Chicago"

    def load(self) -> ScheduleConfig:
        """Defaults from settings, overridden by app_settings rows."""
        enabled = self.store.get_setting(REVIEW_ENABLED_KEY)
        review_time = self.store.get_setting(REVIEW_TIME_KEY)
        window = self.store.get_setting(WINDOW_KEY)
        try:
            window_minutes = int(window) if window else self.defaults.window_minutes
        except ValueError:
            logger.warning(f"Ignoring invalid {WINDOW_KEY} setting: {window!r}")
            window_minutes = self.defaults.window_minutes
        return ScheduleConfig(
            review_enabled=(
                enabled.strip().lower() == "true" if enabled is not None else self.defaults.review_enabled
            ),
            review_time=review_time or self.defaults.review_time,
            window_minutes=window_minutes,
        )

    def local_now(self, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()).astimezone(ZoneInfo(self.timezone))

    def check_review_due(self, now: Optional[datetime] = None) -> datetime:
        """Return the local time if the review check is due.

        Raises:
            ScheduleNotDue: when disabled or outside the time window
        """
        config = self.load()
        if not config.review_enabled:
            raise ScheduleNotDue("Review schedule is disabled")

        local = self.local_now(now)
        try:
            scheduled = _minutes(config.review_time)
        except ValueError:
            raise ScheduleNotDue(f"Invalid review time {config.review_time!r}")

        current = local.hour * 60 + local.minute
        diff = abs(current - scheduled)
        diff = min(diff, 24 * 60 - diff)
        logger.debug(
            f"Review check: local time {local:%H:%M}, scheduled {config.review_time}, "
            f"window {config.window_minutes} min"
        )
        if diff > config.window_minutes:
            raise ScheduleNotDue(f"Not within {config.window_minutes} minutes of {config.review_time}")
        return local
