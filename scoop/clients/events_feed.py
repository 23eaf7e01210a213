"""Client for the paginated third-party events feed."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import aiohttp

from ..core.errors import ExternalSourceError, TransientSourceError
from ..core.retry import RetryPolicy
from ..core.sanitizer import ContentSanitizer
from ..core.utils import parse_timestamp
from ..models.content import ExternalEvent

logger = logging.getLogger(__name__)


@dataclass
class FeedPage:
    """One page of the events feed."""

    events: List[ExternalEvent] = field(default_factory=list)
    raw_count: int = 0
    invalid: int = 0


class EventsFeedClient:
    """Fetches pages of events and normalizes them into ExternalEvent models."""

    def __init__(self, settings=None, retry_policy: Optional[RetryPolicy] = None):
        """Initialize the feed client.

        Args:
            settings: Settings instance for configuration values
            retry_policy: Policy for 503 and transport errors (defaults from settings)
        """
        if settings:
            self.feed_url = settings.events_feed_url
            self.prefix = settings.events_external_prefix
            self.timeout = settings.feed_timeout
            self.per_page = settings.feed_per_page
            self.user_agent = settings.default_user_agent
            self.timezone = settings.timezone
            max_retries = settings.feed_max_retries
            base_delay = settings.feed_backoff_base
        else:
            self.feed_url = "https://www.visitstcloud.com/wp-json/tribe/events/v1/events"
            self.prefix = "visitstcloud_"
            self.timeout = 20.0
            self.per_page = 100
            self.user_agent = "St. Cloud Scoop Newsletter (stcscoop.com)"
            self.timezone = "America/Chicago"
            max_retries = 3
            base_delay = 2.0

        self.retry_policy = retry_policy or RetryPolicy.with_retries(max_retries, base_delay=base_delay)
        self.sanitizer = ContentSanitizer()

    async def _get_page(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Single GET of one feed page.

        Raises:
            TransientSourceError: on 503, timeouts and transport errors
            ExternalSourceError: on any other non-200 status
        """
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.feed_url,
                    params=params,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status == 200:
                        return await response.json(content_type=None)
                    if response.status == 503:
                        raise TransientSourceError("Events feed unavailable (HTTP 503)", status=503)
                    raise ExternalSourceError(
                        f"Events feed error: HTTP {response.status}", status=response.status
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientSourceError(f"Events feed request failed: {e!r}") from e

    async def fetch_external_page(self, start: date, end: date, page: int = 1) -> FeedPage:
        """Fetch and normalize one page of events in [start, end].

        Transient failures are retried with exponential backoff before the
        last error is raised to the caller.
        """
        params = {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "per_page": self.per_page,
            "page": page,
            "status": "publish",
        }
        data = await self.retry_policy.run(self._get_page, params)

        if isinstance(data, dict):
            items = data.get("events") or []
        else:
            items = []
        if not isinstance(items, list):
            raise ExternalSourceError(f"Events feed returned {type(items).__name__} for events")

        result = FeedPage(raw_count=len(items))
        for item in items:
            try:
                result.events.append(self.parse_event(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unparseable feed event: {e}")
                result.invalid += 1

        logger.debug(
            f"Feed page {page} for {start}..{end}: {len(result.events)} events "
            f"({result.invalid} invalid)"
        )
        return result

    def parse_event(self, item: Dict[str, Any]) -> ExternalEvent:
        """Normalize one raw feed item: strip markup, decode entities, parse times."""
        if not isinstance(item, dict) or item.get("id") in (None, ""):
            raise ValueError("Feed event without id")

        start = parse_timestamp(item.get("start_date"), self.timezone)
        if start is None:
            raise ValueError(f"Feed event {item['id']} without start_date")

        venue = item.get("venue") if isinstance(item.get("venue"), dict) else {}
        image = item.get("image") if isinstance(item.get("image"), dict) else {}

        return ExternalEvent(
            external_id=f"{self.prefix}{item['id']}",
            title=self.sanitizer.clean(item.get("title")) or "Untitled Event",
            description=self.sanitizer.clean(item.get("description")),
            start_date=start,
            end_date=parse_timestamp(item.get("end_date"), self.timezone),
            venue=self.sanitizer.clean(venue.get("venue")),
            address=self.sanitizer.clean(venue.get("address")),
            url=item.get("url") or None,
            image_url=image.get("url") or None,
            raw_data=item,
        )
