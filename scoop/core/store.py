"""
SQLite persistence for campaigns, candidates, events and selections.

Every write is an upsert or a conditional update keyed by a natural
identifier (event external id, campaign date, campaign + section +
candidate) so that repeated or concurrent invocations of the same job
leave the database in the same state.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..models.content import (
    Campaign,
    CampaignStatus,
    CandidateArticle,
    DiningDeal,
    ExternalEvent,
    FactCheckResult,
    GetawayListing,
    RoadWorkItem,
    Section,
    Selection,
    TopicGroup,
)
from .errors import CapacityExceeded
from .utils import to_utc_iso, utc_now

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS campaigns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT UNIQUE NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    subject_line TEXT,
    created_at TEXT NOT NULL,
    in_review_at TEXT,
    approved_at TEXT,
    sent_at TEXT,
    archived_at TEXT,
    review_check_date TEXT
);

CREATE TABLE IF NOT EXISTS articles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    campaign_id INTEGER REFERENCES campaigns(id),
    source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    title TEXT NOT NULL,
    body TEXT NOT NULL DEFAULT '',
    source_url TEXT,
    image_url TEXT,
    ingested_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    is_canonical INTEGER NOT NULL DEFAULT 1,
    rank_score REAL,
    criteria TEXT NOT NULL DEFAULT '{}',
    scoring_failed INTEGER NOT NULL DEFAULT 0,
    topic_group_id INTEGER,
    generated_headline TEXT,
    generated_body TEXT,
    copy_version INTEGER NOT NULL DEFAULT 0,
    regeneration_count INTEGER NOT NULL DEFAULT 0,
    force_include INTEGER NOT NULL DEFAULT 0,
    UNIQUE(source, external_id)
);

CREATE TABLE IF NOT EXISTS topic_groups (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    campaign_id INTEGER NOT NULL REFERENCES campaigns(id),
    topic_signature TEXT NOT NULL DEFAULT '',
    canonical_article_id INTEGER NOT NULL,
    member_ids TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS fact_checks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id INTEGER NOT NULL REFERENCES articles(id),
    copy_version INTEGER NOT NULL,
    factual_accuracy REAL NOT NULL,
    context_preservation REAL NOT NULL,
    no_misleading_claims REAL NOT NULL,
    score REAL NOT NULL,
    passed INTEGER NOT NULL,
    details TEXT NOT NULL DEFAULT '',
    checked_at TEXT NOT NULL,
    UNIQUE(article_id, copy_version)
);

CREATE TABLE IF NOT EXISTS events (
    external_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    start_date TEXT NOT NULL,
    end_date TEXT,
    venue TEXT,
    address TEXT,
    url TEXT,
    image_url TEXT,
    raw_data TEXT NOT NULL DEFAULT '{}',
    featured INTEGER NOT NULL DEFAULT 0,
    paid_placement INTEGER NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 1,
    event_summary TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS dining_deals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    business_name TEXT NOT NULL,
    deal_text TEXT NOT NULL,
    day_of_week TEXT NOT NULL,
    is_featured INTEGER NOT NULL DEFAULT 0,
    paid_placement INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS getaway_listings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    listing_type TEXT NOT NULL,
    city TEXT,
    url TEXT,
    image_url TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_selected_on TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS road_work_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    road_name TEXT NOT NULL,
    closure_reason TEXT NOT NULL DEFAULT '',
    area TEXT,
    start_date TEXT NOT NULL,
    expected_reopen TEXT,
    source_url TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS selections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    campaign_id INTEGER NOT NULL REFERENCES campaigns(id),
    section TEXT NOT NULL,
    slot_key TEXT NOT NULL DEFAULT '',
    candidate_id TEXT NOT NULL,
    selection_order INTEGER NOT NULL,
    is_selected INTEGER NOT NULL DEFAULT 1,
    is_featured INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(campaign_id, section, slot_key, candidate_id)
);

CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_campaign ON articles(campaign_id);
CREATE INDEX IF NOT EXISTS idx_events_start ON events(start_date);
CREATE INDEX IF NOT EXISTS idx_selections_lookup ON selections(campaign_id, section, slot_key);
CREATE INDEX IF NOT EXISTS idx_selections_candidate ON selections(section, candidate_id);
"""

# Columns of the events table written from feed data. Everything else
# (featured, paid_placement, active, event_summary) is owned locally.
EVENT_FEED_COLUMNS = (
    "title",
    "description",
    "start_date",
    "end_date",
    "venue",
    "address",
    "url",
    "image_url",
    "raw_data",
)

_TRANSITION_COLUMNS = {
    CampaignStatus.IN_REVIEW: "in_review_at",
    CampaignStatus.APPROVED: "approved_at",
    CampaignStatus.SENT: "sent_at",
    CampaignStatus.ARCHIVED: "archived_at",
}

# Table and key column holding the candidates of each section
_CANDIDATE_TABLES = {
    Section.ARTICLES: ("articles", "id"),
    Section.EVENTS: ("events", "external_id"),
    Section.DINING: ("dining_deals", "id"),
    Section.GETAWAYS: ("getaway_listings", "id"),
    Section.ROAD_WORK: ("road_work_items", "id"),
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return to_utc_iso(value) if value is not None else None


def _day(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class CurationStore:
    """SQLite-backed store for the curation engine."""

    def __init__(self, db_path: str = "scoop.db"):
        """Open (and create if needed) the database.

        Args:
            db_path: SQLite file path
        """
        self.db_path = Path(db_path)
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction that takes the database write lock up front.

        Readers inside the block see a state no other writer can change
        until the block commits, which makes check-then-insert atomic.
        """
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # Campaigns

    def _campaign_from_row(self, row: sqlite3.Row) -> Campaign:
        return Campaign(**dict(row))

    def get_or_create_campaign(self, day: date, now: Optional[datetime] = None) -> Campaign:
        """Return the campaign for ``day``, creating a draft if none exists."""
        now = now or utc_now()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO campaigns (date, status, created_at) VALUES (?, ?, ?)",
                (day.isoformat(), CampaignStatus.DRAFT.value, to_utc_iso(now)),
            )
            if cursor.rowcount:
                logger.info(f"Created draft campaign for {day}")
            row = conn.execute(
                "SELECT * FROM campaigns WHERE date = ?", (day.isoformat(),)
            ).fetchone()
        return self._campaign_from_row(row)

    def get_campaign(self, day: date) -> Optional[Campaign]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM campaigns WHERE date = ?", (day.isoformat(),)
            ).fetchone()
        return self._campaign_from_row(row) if row else None

    def get_campaign_by_id(self, campaign_id: int) -> Optional[Campaign]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM campaigns WHERE id = ?", (campaign_id,)
            ).fetchone()
        return self._campaign_from_row(row) if row else None

    def set_subject_line_if_absent(self, campaign_id: int, subject_line: str) -> bool:
        """Store a subject line unless the campaign already has one."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE campaigns SET subject_line = ?
                WHERE id = ? AND (subject_line IS NULL OR trim(subject_line) = '')
                """,
                (subject_line, campaign_id),
            )
            return cursor.rowcount == 1

    def transition_campaign(
        self,
        campaign_id: int,
        from_statuses: Sequence[CampaignStatus],
        to_status: CampaignStatus,
        now: Optional[datetime] = None,
        guard_date: Optional[date] = None,
    ) -> bool:
        """Conditionally move a campaign to ``to_status``.

        The status check, the transition timestamp and (when ``guard_date``
        is given) the once-per-day guard are applied by one UPDATE, so two
        concurrent callers can never both succeed.

        Returns:
            True if this call performed the transition
        """
        now = now or utc_now()
        column = _TRANSITION_COLUMNS[to_status]
        placeholders = ", ".join("?" for _ in from_statuses)
        assignments = f"status = ?, {column} = ?"
        params: List[Any] = [to_status.value, to_utc_iso(now)]
        conditions = f"id = ? AND status IN ({placeholders})"
        where_params: List[Any] = [campaign_id, *[s.value for s in from_statuses]]

        if guard_date is not None:
            assignments += ", review_check_date = ?"
            params.append(guard_date.isoformat())
            conditions += " AND (review_check_date IS NULL OR review_check_date != ?)"
            where_params.append(guard_date.isoformat())

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE campaigns SET {assignments} WHERE {conditions}",
                (*params, *where_params),
            )
            return cursor.rowcount == 1

    # Articles

    def _article_from_row(self, row: sqlite3.Row) -> CandidateArticle:
        data = dict(row)
        data["criteria"] = json.loads(data.get("criteria") or "{}")
        return CandidateArticle(**data)

    def insert_article(
        self,
        campaign_id: Optional[int],
        source: str,
        external_id: str,
        title: str,
        body: str = "",
        source_url: Optional[str] = None,
        image_url: Optional[str] = None,
        ingested_at: Optional[datetime] = None,
    ) -> Optional[int]:
        """Insert a raw candidate; returns its id, or None if already ingested."""
        ingested_at = ingested_at or utc_now()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO articles
                (campaign_id, source, external_id, title, body, source_url, image_url, ingested_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    campaign_id,
                    source,
                    external_id,
                    title,
                    body or "",
                    source_url,
                    image_url,
                    to_utc_iso(ingested_at),
                ),
            )
            return cursor.lastrowid if cursor.rowcount else None

    def get_article(self, article_id: int) -> Optional[CandidateArticle]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
        return self._article_from_row(row) if row else None

    def list_articles(
        self, campaign_id: int, unscored_only: bool = False, eligible_only: bool = False
    ) -> List[CandidateArticle]:
        """Articles of a campaign in ingestion order.

        Args:
            campaign_id: Owning campaign
            unscored_only: Only articles without a score yet
            eligible_only: Only scored, canonical, active articles
        """
        query = "SELECT * FROM articles WHERE campaign_id = ?"
        if unscored_only:
            query += " AND rank_score IS NULL"
        if eligible_only:
            query += (
                " AND rank_score IS NOT NULL AND scoring_failed = 0"
                " AND is_active = 1 AND is_canonical = 1"
            )
        query += " ORDER BY ingested_at, id"
        with self._connect() as conn:
            rows = conn.execute(query, (campaign_id,)).fetchall()
        return [self._article_from_row(row) for row in rows]

    def save_score(
        self,
        article_id: int,
        rank_score: float,
        criteria: Dict[str, float],
        failed: bool = False,
    ):
        """Record the most recent score of an article, replacing older ones."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE articles SET rank_score = ?, criteria = ?, scoring_failed = ? WHERE id = ?",
                (rank_score, json.dumps(criteria), int(failed), article_id),
            )

    def save_topic_group(
        self,
        campaign_id: int,
        topic_signature: str,
        canonical_article_id: int,
        member_ids: Sequence[int],
    ) -> int:
        """Persist a topic group and retire its non-canonical members."""
        members = sorted(set(member_ids) | {canonical_article_id})
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO topic_groups (campaign_id, topic_signature, canonical_article_id, member_ids)
                VALUES (?, ?, ?, ?)
                """,
                (campaign_id, topic_signature, canonical_article_id, json.dumps(members)),
            )
            group_id = cursor.lastrowid
            for article_id in members:
                is_canonical = int(article_id == canonical_article_id)
                conn.execute(
                    """
                    UPDATE articles SET topic_group_id = ?, is_canonical = ?,
                        is_active = CASE WHEN ? = 1 THEN is_active ELSE 0 END
                    WHERE id = ?
                    """,
                    (group_id, is_canonical, is_canonical, article_id),
                )
        return group_id

    def list_topic_groups(self, campaign_id: int) -> List[TopicGroup]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM topic_groups WHERE campaign_id = ? ORDER BY id", (campaign_id,)
            ).fetchall()
        groups = []
        for row in rows:
            data = dict(row)
            data["member_ids"] = json.loads(data["member_ids"])
            groups.append(TopicGroup(**data))
        return groups

    def save_generated_copy(
        self, article_id: int, headline: str, body: str, regeneration: bool = False
    ) -> int:
        """Store new article copy and return its version number."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE articles SET generated_headline = ?, generated_body = ?,
                    copy_version = copy_version + 1,
                    regeneration_count = regeneration_count + ?
                WHERE id = ?
                """,
                (headline, body, int(regeneration), article_id),
            )
            row = conn.execute(
                "SELECT copy_version FROM articles WHERE id = ?", (article_id,)
            ).fetchone()
        return row["copy_version"]

    def set_force_include(self, article_id: int, value: bool = True) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE articles SET force_include = ? WHERE id = ?", (int(value), article_id)
            )
            return cursor.rowcount == 1

    # Fact checks

    def save_fact_check(self, result: FactCheckResult) -> FactCheckResult:
        """Upsert the fact-check result of one article copy version."""
        checked_at = result.checked_at or utc_now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO fact_checks
                (article_id, copy_version, factual_accuracy, context_preservation,
                 no_misleading_claims, score, passed, details, checked_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(article_id, copy_version) DO UPDATE SET
                    factual_accuracy = excluded.factual_accuracy,
                    context_preservation = excluded.context_preservation,
                    no_misleading_claims = excluded.no_misleading_claims,
                    score = excluded.score,
                    passed = excluded.passed,
                    details = excluded.details,
                    checked_at = excluded.checked_at
                """,
                (
                    result.article_id,
                    result.copy_version,
                    result.factual_accuracy,
                    result.context_preservation,
                    result.no_misleading_claims,
                    result.score,
                    int(result.passed),
                    result.details,
                    to_utc_iso(checked_at),
                ),
            )
        return result.model_copy(update={"checked_at": checked_at})

    def get_fact_check(self, article_id: int, copy_version: int) -> Optional[FactCheckResult]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM fact_checks WHERE article_id = ? AND copy_version = ?",
                (article_id, copy_version),
            ).fetchone()
        if not row:
            return None
        return FactCheckResult(
            article_id=row["article_id"],
            copy_version=row["copy_version"],
            factual_accuracy=row["factual_accuracy"],
            context_preservation=row["context_preservation"],
            no_misleading_claims=row["no_misleading_claims"],
            details=row["details"],
            checked_at=row["checked_at"],
        )

    # Events

    def _event_from_row(self, row: sqlite3.Row) -> ExternalEvent:
        data = dict(row)
        data["raw_data"] = json.loads(data.get("raw_data") or "{}")
        return ExternalEvent(**data)

    def get_event(self, external_id: str) -> Optional[ExternalEvent]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM events WHERE external_id = ?", (external_id,)
            ).fetchone()
        return self._event_from_row(row) if row else None

    def get_events(self, external_ids: Iterable[str]) -> Dict[str, ExternalEvent]:
        ids = list(external_ids)
        if not ids:
            return {}
        events = {}
        with self._connect() as conn:
            for start in range(0, len(ids), 500):
                chunk = ids[start : start + 500]
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT * FROM events WHERE external_id IN ({placeholders})", chunk
                ).fetchall()
                for row in rows:
                    events[row["external_id"]] = self._event_from_row(row)
        return events

    def save_event(self, event: ExternalEvent, now: Optional[datetime] = None) -> bool:
        """Upsert an event keyed by its external id.

        Only feed-owned columns are updated on conflict; the locally owned
        overrides are never touched by this statement, and an existing
        summary always wins over the incoming one.

        Returns:
            True if the event was new
        """
        now = to_utc_iso(now or utc_now())
        values = {
            "title": event.title,
            "description": event.description,
            "start_date": to_utc_iso(event.start_date),
            "end_date": _iso(event.end_date),
            "venue": event.venue,
            "address": event.address,
            "url": event.url,
            "image_url": event.image_url,
            "raw_data": json.dumps(event.raw_data, default=str),
        }
        updates = ", ".join(f"{column} = excluded.{column}" for column in EVENT_FEED_COLUMNS)
        with self._connect() as conn:
            existed = conn.execute(
                "SELECT 1 FROM events WHERE external_id = ?", (event.external_id,)
            ).fetchone()
            conn.execute(
                f"""
                INSERT INTO events
                (external_id, {", ".join(EVENT_FEED_COLUMNS)}, featured, paid_placement,
                 active, event_summary, created_at, updated_at)
                VALUES (?, {", ".join("?" for _ in EVENT_FEED_COLUMNS)}, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_id) DO UPDATE SET
                    {updates},
                    event_summary = COALESCE(events.event_summary, excluded.event_summary),
                    updated_at = excluded.updated_at
                """,
                (
                    event.external_id,
                    *[values[column] for column in EVENT_FEED_COLUMNS],
                    int(event.featured),
                    int(event.paid_placement),
                    int(event.active),
                    event.event_summary,
                    now,
                    now,
                ),
            )
        return existed is None

    def set_event_summary_if_absent(self, external_id: str, summary: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE events SET event_summary = ?, updated_at = ?
                WHERE external_id = ? AND (event_summary IS NULL OR trim(event_summary) = '')
                """,
                (summary, to_utc_iso(utc_now()), external_id),
            )
            return cursor.rowcount == 1

    def set_event_flags(
        self,
        external_id: str,
        featured: Optional[bool] = None,
        paid_placement: Optional[bool] = None,
        active: Optional[bool] = None,
    ) -> bool:
        """Explicit local action on the operator-owned event flags."""
        changes = {
            "featured": featured,
            "paid_placement": paid_placement,
            "active": active,
        }
        changes = {k: int(v) for k, v in changes.items() if v is not None}
        if not changes:
            return False
        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE events SET {assignments}, updated_at = ? WHERE external_id = ?",
                (*changes.values(), to_utc_iso(utc_now()), external_id),
            )
            return cursor.rowcount == 1

    def list_events_between(
        self, start_iso: str, end_iso: str, active_only: bool = True
    ) -> List[ExternalEvent]:
        """Events starting in the UTC range [start_iso, end_iso)."""
        query = "SELECT * FROM events WHERE start_date >= ? AND start_date < ?"
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY start_date, external_id"
        with self._connect() as conn:
            rows = conn.execute(query, (start_iso, end_iso)).fetchall()
        return [self._event_from_row(row) for row in rows]

    def deactivate_stale_events(
        self,
        prefix: str,
        seen_ids: Iterable[str],
        now: Optional[datetime] = None,
        protection_lapses_when_closed: bool = False,
    ) -> List[str]:
        """Deactivate feed events that are absent, finished and unprotected.

        An event is protected while any campaign has it selected. With
        ``protection_lapses_when_closed`` a selection stops protecting once
        its campaign is sent or archived.

        Returns:
            External ids that were deactivated
        """
        now_iso = to_utc_iso(now or utc_now())
        closed_filter = ""
        if protection_lapses_when_closed:
            closed_filter = "AND c.status NOT IN ('sent', 'archived')"

        with self._transaction() as conn:
            conn.execute("CREATE TEMP TABLE IF NOT EXISTS seen_events (external_id TEXT PRIMARY KEY)")
            conn.execute("DELETE FROM seen_events")
            conn.executemany(
                "INSERT OR IGNORE INTO seen_events (external_id) VALUES (?)",
                [(external_id,) for external_id in seen_ids],
            )
            candidates = f"""
                FROM events
                WHERE active = 1
                  AND substr(external_id, 1, ?) = ?
                  AND external_id NOT IN (SELECT external_id FROM seen_events)
                  AND COALESCE(end_date, start_date) < ?
                  AND NOT EXISTS (
                      SELECT 1 FROM selections s
                      JOIN campaigns c ON c.id = s.campaign_id
                      WHERE s.section = 'events'
                        AND s.candidate_id = events.external_id
                        AND s.is_selected = 1
                        {closed_filter}
                  )
            """
            params = (len(prefix), prefix, now_iso)
            stale = [
                row["external_id"]
                for row in conn.execute(f"SELECT external_id {candidates}", params).fetchall()
            ]
            if stale:
                conn.execute(
                    f"UPDATE events SET active = 0, updated_at = ? WHERE external_id IN "
                    f"(SELECT external_id {candidates})",
                    (now_iso, *params),
                )
        return stale

    # Dining, getaways, road work

    def add_dining_deal(
        self,
        business_name: str,
        deal_text: str,
        day_of_week: str,
        is_featured: bool = False,
        paid_placement: bool = False,
        is_active: bool = True,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO dining_deals
                (business_name, deal_text, day_of_week, is_featured, paid_placement, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    business_name,
                    deal_text,
                    day_of_week.capitalize(),
                    int(is_featured),
                    int(paid_placement),
                    int(is_active),
                    to_utc_iso(utc_now()),
                ),
            )
            return cursor.lastrowid

    def list_dining_deals(self, day_of_week: str) -> List[DiningDeal]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM dining_deals
                WHERE is_active = 1 AND lower(day_of_week) = lower(?)
                ORDER BY created_at, id
                """,
                (day_of_week,),
            ).fetchall()
        return [DiningDeal(**dict(row)) for row in rows]

    def add_getaway_listing(
        self,
        title: str,
        listing_type: str,
        city: Optional[str] = None,
        url: Optional[str] = None,
        image_url: Optional[str] = None,
        is_active: bool = True,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO getaway_listings
                (title, listing_type, city, url, image_url, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (title, listing_type.lower(), city, url, image_url, int(is_active), to_utc_iso(utc_now())),
            )
            return cursor.lastrowid

    def list_getaway_listings(self, listing_type: str) -> List[GetawayListing]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM getaway_listings
                WHERE is_active = 1 AND listing_type = ?
                ORDER BY id
                """,
                (listing_type,),
            ).fetchall()
        return [GetawayListing(**dict(row)) for row in rows]

    def mark_getaways_selected(self, listing_ids: Iterable[int], day: date):
        with self._connect() as conn:
            conn.executemany(
                "UPDATE getaway_listings SET last_selected_on = ? WHERE id = ?",
                [(day.isoformat(), listing_id) for listing_id in listing_ids],
            )

    def add_road_work_item(
        self,
        road_name: str,
        start_date: date,
        closure_reason: str = "",
        area: Optional[str] = None,
        expected_reopen: Optional[date] = None,
        source_url: Optional[str] = None,
        is_active: bool = True,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO road_work_items
                (road_name, closure_reason, area, start_date, expected_reopen, source_url, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    road_name,
                    closure_reason,
                    area,
                    start_date.isoformat(),
                    _day(expected_reopen),
                    source_url,
                    int(is_active),
                    to_utc_iso(utc_now()),
                ),
            )
            return cursor.lastrowid

    def list_road_work(self, day: date) -> List[RoadWorkItem]:
        """Active advisories in effect on ``day``."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM road_work_items
                WHERE is_active = 1 AND start_date <= ?
                  AND (expected_reopen IS NULL OR expected_reopen >= ?)
                ORDER BY start_date, id
                """,
                (day.isoformat(), day.isoformat()),
            ).fetchall()
        return [RoadWorkItem(**dict(row)) for row in rows]

    # Selections

    def _selection_from_row(self, row: sqlite3.Row) -> Selection:
        return Selection(**dict(row))

    def _fetch_selections(
        self,
        conn: sqlite3.Connection,
        campaign_id: int,
        section: Section,
        slot_key: Optional[str],
    ) -> List[Selection]:
        query = "SELECT * FROM selections WHERE campaign_id = ? AND section = ?"
        params: List[Any] = [campaign_id, section.value]
        if slot_key is not None:
            query += " AND slot_key = ?"
            params.append(slot_key)
        query += " ORDER BY slot_key, selection_order, id"
        return [self._selection_from_row(row) for row in conn.execute(query, params).fetchall()]

    def get_selections(
        self, campaign_id: int, section: Section, slot_key: Optional[str] = None
    ) -> List[Selection]:
        """Persisted selections of a section (all slots when ``slot_key`` is None)."""
        with self._connect() as conn:
            return self._fetch_selections(conn, campaign_id, section, slot_key)

    def insert_selections_if_absent(
        self,
        campaign_id: int,
        section: Section,
        slot_key: str,
        picks: Sequence[Tuple[str, bool]],
        now: Optional[datetime] = None,
    ) -> Tuple[List[Selection], bool]:
        """Write the initial selection of a slot unless one already exists.

        Args:
            picks: (candidate_id, is_featured) pairs in selection order

        Returns:
            The persisted selections and whether this call created them
        """
        now_iso = to_utc_iso(now or utc_now())
        with self._transaction() as conn:
            existing = self._fetch_selections(conn, campaign_id, section, slot_key)
            if existing:
                return existing, False
            conn.executemany(
                """
                INSERT INTO selections
                (campaign_id, section, slot_key, candidate_id, selection_order,
                 is_selected, is_featured, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
                """,
                [
                    (campaign_id, section.value, slot_key, candidate_id, order, int(featured), now_iso, now_iso)
                    for order, (candidate_id, featured) in enumerate(picks, start=1)
                ],
            )
            return self._fetch_selections(conn, campaign_id, section, slot_key), True

    def add_selections(
        self,
        campaign_id: int,
        section: Section,
        slot_key: str,
        candidate_ids: Sequence[str],
        capacity: int,
        now: Optional[datetime] = None,
    ) -> List[Selection]:
        """Select more candidates in a slot, re-selecting rows that exist.

        Raises:
            CapacityExceeded: if the slot would exceed ``capacity``
        """
        now_iso = to_utc_iso(now or utc_now())
        with self._transaction() as conn:
            current = self._fetch_selections(conn, campaign_id, section, slot_key)
            selected = {s.candidate_id for s in current if s.is_selected}
            to_add = [cid for cid in dict.fromkeys(candidate_ids) if cid not in selected]
            if len(selected) + len(to_add) > capacity:
                raise CapacityExceeded(
                    f"{section.value}[{slot_key}] would hold {len(selected) + len(to_add)} "
                    f"selections, capacity is {capacity}"
                )
            next_order = max((s.selection_order for s in current), default=0) + 1
            for candidate_id in to_add:
                conn.execute(
                    """
                    INSERT INTO selections
                    (campaign_id, section, slot_key, candidate_id, selection_order,
                     is_selected, is_featured, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 1, 0, ?, ?)
                    ON CONFLICT(campaign_id, section, slot_key, candidate_id) DO UPDATE SET
                        is_selected = 1, updated_at = excluded.updated_at
                    """,
                    (campaign_id, section.value, slot_key, candidate_id, next_order, now_iso, now_iso),
                )
                next_order += 1
            return self._fetch_selections(conn, campaign_id, section, slot_key)

    def set_selection_state(
        self,
        campaign_id: int,
        section: Section,
        candidate_id: str,
        is_selected: Optional[bool] = None,
        is_featured: Optional[bool] = None,
        slot_key: Optional[str] = None,
    ) -> int:
        """Update flags of existing selection rows; returns rows changed."""
        changes = {"is_selected": is_selected, "is_featured": is_featured}
        changes = {k: int(v) for k, v in changes.items() if v is not None}
        if not changes:
            return 0
        assignments = ", ".join(f"{column} = ?" for column in changes)
        query = (
            f"UPDATE selections SET {assignments}, updated_at = ? "
            "WHERE campaign_id = ? AND section = ? AND candidate_id = ?"
        )
        params: List[Any] = [*changes.values(), to_utc_iso(utc_now()), campaign_id, section.value, candidate_id]
        if slot_key is not None:
            query += " AND slot_key = ?"
            params.append(slot_key)
        with self._connect() as conn:
            return conn.execute(query, params).rowcount

    def candidate_exists(self, section: Section, candidate_id: str, campaign_id: Optional[int] = None) -> bool:
        """Whether a candidate of ``section`` exists (articles must belong to ``campaign_id``)."""
        table, column = _CANDIDATE_TABLES[section]
        query = f"SELECT 1 FROM {table} WHERE {column} = ?"
        params: List[Any] = [candidate_id]
        if section == Section.ARTICLES and campaign_id is not None:
            query += " AND campaign_id = ?"
            params.append(campaign_id)
        with self._connect() as conn:
            return conn.execute(query, params).fetchone() is not None

    def count_selected(self, campaign_id: int, section: Section, slot_key: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM selections WHERE campaign_id = ? AND section = ? AND is_selected = 1"
        params: List[Any] = [campaign_id, section.value]
        if slot_key is not None:
            query += " AND slot_key = ?"
            params.append(slot_key)
        with self._connect() as conn:
            return conn.execute(query, params).fetchone()[0]

    # App settings

    def get_setting(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM app_settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str):
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, to_utc_iso(utc_now())),
            )
