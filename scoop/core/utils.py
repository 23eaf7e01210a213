"""Utility functions for URL, text and time handling."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from urllib.parse import urlparse
from zoneinfo import ZoneInfo


def extract_source_from_url(url: str) -> str:
    """Extract a human friendly source name from a URL.

    Removes common subdomains and TLDs and returns a title-cased domain
    name. Returns an empty string if the URL cannot be parsed.
    """
    if not url:
        return ""

    try:
        parsed = urlparse(url)
    except ValueError:
        return ""

    domain = parsed.netloc.lower()
    if not domain:
        return ""

    domain = re.sub(r"^(www\.|m\.|mobile\.)", "", domain)
    domain = re.sub(r"\.(com|org|net|edu|gov|us|co\.uk)$", "", domain)
    main_domain = domain.split(".")[0]
    return main_domain.replace("-", " ").replace("_", " ").title()


def clean_article_title(title: str) -> str:
    """Clean article titles by removing noisy prefixes and extra whitespace."""
    if not title:
        return "Untitled Article"

    cleaned = re.sub(r"^\[.*?\]\s*", "", title)
    cleaned = re.sub(r"^(Fwd:|Re:|FW:)\s*", "", cleaned, flags=re.IGNORECASE)
    cleaned = " ".join(cleaned.split())
    return cleaned or "Untitled Article"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_utc_iso(value: datetime, tz_name: str = "UTC") -> str:
    """Serialize a datetime as a second-precision UTC ISO string.

    Naive datetimes are interpreted in ``tz_name``. Every timestamp stored
    by the engine goes through here so that string comparison in SQL
    matches chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=ZoneInfo(tz_name))
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def parse_timestamp(value: Optional[str], tz_name: str = "UTC") -> Optional[datetime]:
    """Parse feed or database timestamps; returns None for blanks."""
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(tz_name))
    return parsed


def local_day_bounds(day: date, tz_name: str) -> Tuple[str, str]:
    """UTC ISO bounds [start, end) of a calendar day in ``tz_name``."""
    zone = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = start + timedelta(days=1)
    return to_utc_iso(start), to_utc_iso(end)


def local_today(tz_name: str, now: Optional[datetime] = None) -> date:
    now = now or utc_now()
    return now.astimezone(ZoneInfo(tz_name)).date()
