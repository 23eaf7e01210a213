"""RSS feed client for retrieving local news candidates."""

import asyncio
import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

import aiohttp
from bs4 import BeautifulSoup

from ..core.sanitizer import ContentSanitizer
from ..core.utils import clean_article_title, extract_source_from_url

logger = logging.getLogger(__name__)

ATOM = "{http://www.w3.org/2005/Atom}"
MEDIA = "{http://search.yahoo.com/mrss/}"


class RSSClient:
    """Client for fetching and parsing RSS and Atom feeds."""

    def __init__(self, feed_urls: List[str], settings=None):
        """Initialize RSS client.

        Args:
            feed_urls: List of RSS feed URLs to monitor
            settings: Settings instance for configuration values
        """
        self.feed_urls = feed_urls if feed_urls else []
        self.feed_timeout = settings.feed_timeout if settings else 20.0
        self.user_agent = settings.default_user_agent if settings else "Newsletter-Bot/1.0"
        self.sanitizer = ContentSanitizer()

    async def get_recent_articles(
        self, hours: int = 24, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Get recent articles from all RSS feeds.

        Args:
            hours: Only keep items published within this many hours
            now: Reference time (defaults to the current UTC time)

        Returns:
            List of article dictionaries, newest first
        """
        if not self.feed_urls:
            logger.warning("No RSS feed URLs configured")
            return []

        now = now or datetime.now(timezone.utc)
        threshold = now - timedelta(hours=hours)
        all_articles = []

        async with aiohttp.ClientSession() as session:
            tasks = [self._fetch_feed(session, url.strip(), threshold) for url in self.feed_urls]
            feed_results = await asyncio.gather(*tasks, return_exceptions=True)

        for feed_url, result in zip(self.feed_urls, feed_results):
            if isinstance(result, Exception):
                logger.error(f"Error fetching feed {feed_url}: {result}")
            else:
                all_articles.extend(result)

        oldest = datetime.min.replace(tzinfo=timezone.utc)
        all_articles.sort(key=lambda x: x.get("published_at") or oldest, reverse=True)
        logger.info(f"Retrieved {len(all_articles)} articles from {len(self.feed_urls)} RSS feeds")
        return all_articles

    async def _fetch_feed(
        self, session: aiohttp.ClientSession, feed_url: str, threshold: datetime
    ) -> List[Dict[str, Any]]:
        try:
            headers = {"User-Agent": f"{self.user_agent} (RSS Reader)"}
            timeout = aiohttp.ClientTimeout(total=self.feed_timeout)
            async with session.get(feed_url, headers=headers, timeout=timeout) as response:
                if response.status != 200:
                    logger.error(f"Failed to fetch RSS feed {feed_url}: HTTP {response.status}")
                    return []
                content = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Network error fetching RSS feed {feed_url}: {e}")
            return []

        return self.parse_feed(content, feed_url, threshold)

    def parse_feed(self, xml_content: str, feed_url: str, threshold: datetime) -> List[Dict[str, Any]]:
        """Parse RSS or Atom XML, keeping items published after ``threshold``.

        Items without a parseable date are kept.
        """
        try:
            root = ET.fromstring(xml_content)
        except ET.ParseError as e:
            logger.error(f"XML parsing error for {feed_url}: {e}")
            return []

        if root.tag == "rss":
            items = root.findall(".//item")
            feed_title = self._get_text(root.find(".//channel/title"), "Unknown Feed")
        elif root.tag == f"{ATOM}feed":
            items = root.findall(f".//{ATOM}entry")
            feed_title = self._get_text(root.find(f"{ATOM}title"), "Unknown Feed")
        else:
            logger.warning(f"Unrecognized feed format for {feed_url}")
            return []

        articles = []
        for item in items:
            try:
                article = self._parse_item(item, feed_url, feed_title, root.tag == "rss")
            except (ValueError, TypeError, AttributeError) as e:
                logger.debug(f"Error parsing RSS item: {e}")
                continue

            published = article.get("published_at")
            if published and published < threshold:
                continue
            articles.append(article)

        logger.debug(f"Parsed {len(articles)} recent articles from {feed_title}")
        return articles

    def _parse_item(
        self, item: ET.Element, feed_url: str, feed_title: str, is_rss: bool
    ) -> Dict[str, Any]:
        if is_rss:
            title = self._get_text(item.find("title"), "")
            description = self._get_text(item.find("description"), "")
            link = self._get_text(item.find("link"), "")
            pub_date = self._get_text(item.find("pubDate"), "")
            guid = self._get_text(item.find("guid"), "")
        else:
            title = self._get_text(item.find(f"{ATOM}title"), "")
            content_elem = item.find(f"{ATOM}content")
            if content_elem is None:
                content_elem = item.find(f"{ATOM}summary")
            description = self._get_text(content_elem, "")
            link_elem = item.find(f'{ATOM}link[@rel="alternate"]')
            if link_elem is None:
                link_elem = item.find(f"{ATOM}link")
            link = link_elem.get("href", "") if link_elem is not None else ""
            pub_date = self._get_text(
                item.find(f"{ATOM}published"), self._get_text(item.find(f"{ATOM}updated"), "")
            )
            guid = self._get_text(item.find(f"{ATOM}id"), "")

        external_id = guid or link
        if not external_id:
            raise ValueError("Feed item without guid or link")

        return {
            "external_id": external_id,
            "title": clean_article_title(self.sanitizer.clean(title) or ""),
            "body": self.sanitizer.clean(description) or "",
            "source": extract_source_from_url(link) or feed_title,
            "feed_url": feed_url,
            "source_url": link or None,
            "image_url": self._extract_image(item, description),
            "published_at": self._parse_date(pub_date),
        }

    def _extract_image(self, item: ET.Element, description: str) -> Optional[str]:
        """Image from media:content, media:thumbnail, an image enclosure or inline HTML."""
        for tag in (f"{MEDIA}content", f"{MEDIA}thumbnail"):
            elem = item.find(tag)
            if elem is not None and elem.get("url"):
                medium = elem.get("medium") or elem.get("type") or "image"
                if "image" in medium:
                    return elem.get("url")

        enclosure = item.find("enclosure")
        if enclosure is not None and (enclosure.get("type") or "").startswith("image"):
            return enclosure.get("url")

        if description and "<img" in description:
            img = BeautifulSoup(description, "html.parser").find("img")
            if img is not None and img.get("src"):
                return img.get("src")
        return None

    def _get_text(self, element: Optional[ET.Element], default: str = "") -> str:
        if element is not None and element.text:
            return element.text.strip()
        return default

    def _parse_date(self, date_str: str) -> Optional[datetime]:
        """Parse RFC 822 or ISO dates into aware UTC datetimes."""
        if not date_str:
            return None
        try:
            parsed = parsedate_to_datetime(date_str)
        except (TypeError, ValueError, IndexError):
            try:
                parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
            except ValueError:
                return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
