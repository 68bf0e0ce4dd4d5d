"""
Repositories over the SQLite tables used by generation and fulfillment.

Every write is a single-row insert, update, or delete scoped by a key, so concurrent
writers for different users, stories, or orders never contend on the same row.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from .db import connect, get_connection
from .models import (
    FULFILLMENT_COMPLETED,
    ORDER_PAID,
    Character,
    InFlightRecord,
    MetricRecord,
    Order,
    OrderItem,
    Story,
    StoryPage,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class _Repository:
    def __init__(self, db_path: str = "storyforge.db") -> None:
        self.db_path = db_path


class SettingsRepository(_Repository):
    """Key/value rows holding JSON documents (e.g. the feature flag matrix)."""

    def get_value(self, key: str) -> Any | None:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT value FROM system_settings WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return json.loads(row["value"]) if row else None

    def set_value(self, key: str, value: Any) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO system_settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET value = excluded.value,
                                                updated_at = excluded.updated_at
                """,
                (key, json.dumps(value, sort_keys=True), _iso(utcnow())),
            )


class InFlightRepository(_Repository):
    def insert(self, record: InFlightRecord) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO inflight_calls (user_id, stage, activity, model, input, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    record.stage,
                    record.activity,
                    record.model,
                    json.dumps(dict(record.input_summary), default=str),
                    _iso(record.created_at),
                ),
            )

    def delete(self, user_id: str, activity: str) -> int:
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM inflight_calls WHERE user_id = ? AND activity = ?",
                (user_id, activity),
            )
            return cursor.rowcount

    def delete_older_than(self, cutoff: datetime) -> int:
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM inflight_calls WHERE created_at < ?", (_iso(cutoff),)
            )
            return cursor.rowcount

    def list(
        self,
        *,
        user_id: str | None = None,
        activity: str | None = None,
    ) -> list[InFlightRecord]:
        query = "SELECT user_id, stage, activity, model, input, created_at FROM inflight_calls"
        conditions: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        if activity is not None:
            conditions.append("activity = ?")
            params.append(activity)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at ASC"

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [
            InFlightRecord(
                user_id=row["user_id"],
                stage=row["stage"],
                activity=row["activity"],
                model=row["model"],
                input_summary=json.loads(row["input"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]


class MetricsRepository(_Repository):
    """Append-only ledger of orchestrated calls. No UPDATE or DELETE is ever issued."""

    _COLUMNS = (
        "activity, model, timestamp, latency_ms, outcome, error_kind, tokens_in, "
        "tokens_out, cached_tokens_in, cached_tokens_out, user_id, attempts, metadata"
    )

    def insert(self, record: MetricRecord) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO prompt_metrics ({self._COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.activity,
                    record.model,
                    _iso(record.timestamp),
                    record.latency_ms,
                    record.outcome,
                    record.error_kind,
                    record.tokens_in,
                    record.tokens_out,
                    record.cached_tokens_in,
                    record.cached_tokens_out,
                    record.user_id,
                    record.attempts,
                    json.dumps(dict(record.metadata), default=str) if record.metadata else None,
                ),
            )

    def fetch(
        self,
        *,
        activity: str | None = None,
        since: datetime | None = None,
        limit: int = 1000,
    ) -> list[MetricRecord]:
        """Return records newest first, optionally filtered by activity and start time."""
        query = f"SELECT {self._COLUMNS} FROM prompt_metrics"
        conditions: list[str] = []
        params: list[Any] = []
        if activity:
            conditions.append("activity = ?")
            params.append(activity)
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(_iso(since))
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [
            MetricRecord(
                activity=row["activity"],
                model=row["model"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                latency_ms=row["latency_ms"],
                outcome=row["outcome"],
                error_kind=row["error_kind"],
                tokens_in=row["tokens_in"],
                tokens_out=row["tokens_out"],
                cached_tokens_in=row["cached_tokens_in"],
                cached_tokens_out=row["cached_tokens_out"],
                user_id=row["user_id"],
                attempts=row["attempts"],
                metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            )
            for row in rows
        ]

    def aggregate(self, *, since: datetime, activity: str | None = None) -> list[Mapping[str, Any]]:
        query = """
            SELECT activity,
                   COUNT(*) AS total,
                   SUM(CASE WHEN outcome = 'error' THEN 1 ELSE 0 END) AS errors,
                   AVG(latency_ms) AS avg_latency_ms,
                   SUM(tokens_in) AS tokens_in,
                   SUM(tokens_out) AS tokens_out
            FROM prompt_metrics
            WHERE timestamp >= ?
        """
        params: list[Any] = [_iso(since)]
        if activity:
            query += " AND activity = ?"
            params.append(activity)
        query += " GROUP BY activity ORDER BY activity"

        conn = get_connection(self.db_path)
        try:
            return [dict(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()


class CharacterRepository(_Repository):
    def get(self, character_id: str) -> Character | None:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT id, user_id, name, description, reference_image_url, thumbnail_url
                FROM characters WHERE id = ?
                """,
                (character_id,),
            ).fetchone()
        finally:
            conn.close()
        return Character(**dict(row)) if row else None

    def save(self, character: Character) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO characters
                    (id, user_id, name, description, reference_image_url, thumbnail_url, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    reference_image_url = excluded.reference_image_url,
                    updated_at = excluded.updated_at
                """,
                (
                    character.id,
                    character.user_id,
                    character.name,
                    character.description,
                    character.reference_image_url,
                    character.thumbnail_url,
                    _iso(utcnow()),
                ),
            )

    def set_thumbnail_url(self, character_id: str, url: str) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE characters SET thumbnail_url = ?, updated_at = ? WHERE id = ?",
                (url, _iso(utcnow()), character_id),
            )


class StoryRepository(_Repository):
    def get(self, story_id: str, *, include_pages: bool = False) -> Story | None:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT id, user_id, title, status, cover_url, pdf_url, pdf_generated_at,
                       wizard_state
                FROM stories WHERE id = ?
                """,
                (story_id,),
            ).fetchone()
            if row is None:
                return None
            story = Story(
                id=row["id"],
                user_id=row["user_id"],
                title=row["title"],
                status=row["status"],
                cover_url=row["cover_url"],
                pdf_url=row["pdf_url"],
                pdf_generated_at=_parse(row["pdf_generated_at"]),
                wizard_state=json.loads(row["wizard_state"]) if row["wizard_state"] else None,
            )
            if include_pages:
                page_rows = conn.execute(
                    """
                    SELECT id, story_id, page_number, text, image_url, prompt
                    FROM story_pages WHERE story_id = ? ORDER BY page_number ASC
                    """,
                    (story_id,),
                ).fetchall()
                story.pages = [StoryPage(**dict(page)) for page in page_rows]
            return story
        finally:
            conn.close()

    def save(self, story: Story) -> None:
        """Insert or update the story row and its pages (used by seeding and tests)."""
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO stories (id, user_id, title, status, cover_url, pdf_url, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    title = excluded.title,
                    status = excluded.status,
                    updated_at = excluded.updated_at
                """,
                (
                    story.id,
                    story.user_id,
                    story.title,
                    story.status,
                    story.cover_url,
                    story.pdf_url,
                    _iso(utcnow()),
                ),
            )
            for page in story.pages:
                conn.execute(
                    """
                    INSERT INTO story_pages (id, story_id, page_number, text, image_url, prompt)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT (id) DO UPDATE SET
                        page_number = excluded.page_number,
                        text = excluded.text
                    """,
                    (page.id, story.id, page.page_number, page.text, page.image_url, page.prompt),
                )

    def get_page(self, page_id: str) -> StoryPage | None:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, story_id, page_number, text, image_url, prompt FROM story_pages WHERE id = ?",
                (page_id,),
            ).fetchone()
        finally:
            conn.close()
        return StoryPage(**dict(row)) if row else None

    def link_characters(self, story_id: str, character_ids: Iterable[str]) -> None:
        with connect(self.db_path) as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO story_characters (story_id, character_id) VALUES (?, ?)",
                [(story_id, character_id) for character_id in character_ids],
            )

    def characters_for(self, story_id: str) -> list[Character]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT c.id, c.user_id, c.name, c.description, c.reference_image_url, c.thumbnail_url
                FROM characters c
                JOIN story_characters sc ON sc.character_id = c.id
                WHERE sc.story_id = ?
                ORDER BY c.name ASC
                """,
                (story_id,),
            ).fetchall()
        finally:
            conn.close()
        return [Character(**dict(row)) for row in rows]

    def set_cover_url(self, story_id: str, url: str) -> None:
        now = _iso(utcnow())
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE stories SET cover_url = ?, cover_updated_at = ?, updated_at = ? WHERE id = ?",
                (url, now, now, story_id),
            )

    def set_page_image(self, page_id: str, url: str, *, prompt: str | None = None) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE story_pages SET image_url = ?, prompt = ?, updated_at = ? WHERE id = ?",
                (url, prompt, _iso(utcnow()), page_id),
            )

    def set_pdf_url(self, story_id: str, url: str, *, user_id: str) -> bool:
        """Record the exported PDF; scoped to the owning user. Returns True if a row changed."""
        now = _iso(utcnow())
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE stories SET pdf_url = ?, pdf_generated_at = ?, updated_at = ?
                WHERE id = ? AND user_id = ?
                """,
                (url, now, now, story_id, user_id),
            )
            return cursor.rowcount == 1

    def claim_export(
        self,
        story_id: str,
        token: str,
        *,
        lease_seconds: float,
        now: datetime | None = None,
    ) -> bool:
        """
        Take the export lease for a story that has no PDF yet.

        The lease is granted when nobody holds it or the previous holder's lease expired.
        """
        moment = now or utcnow()
        expires = moment + timedelta(seconds=lease_seconds)
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE stories
                SET export_claim_token = ?, export_claim_expires_at = ?
                WHERE id = ?
                  AND pdf_url IS NULL
                  AND (export_claim_token IS NULL OR export_claim_expires_at < ?)
                """,
                (token, _iso(expires), story_id, _iso(moment)),
            )
            return cursor.rowcount == 1

    def release_export(self, story_id: str, token: str) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                UPDATE stories SET export_claim_token = NULL, export_claim_expires_at = NULL
                WHERE id = ? AND export_claim_token = ?
                """,
                (story_id, token),
            )

    def get_wizard_state(self, story_id: str) -> Mapping[str, Any] | None:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT wizard_state FROM stories WHERE id = ?", (story_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise KeyError(f"Story '{story_id}' not found.")
        return json.loads(row["wizard_state"]) if row["wizard_state"] else None

    def set_wizard_state(self, story_id: str, state: Mapping[str, Any]) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE stories SET wizard_state = ?, updated_at = ? WHERE id = ?",
                (json.dumps(dict(state)), _iso(utcnow()), story_id),
            )


class OrderRepository(_Repository):
    def get(self, order_id: str) -> Order | None:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, user_id, status, fulfillment_status, fulfilled_at FROM orders WHERE id = ?",
                (order_id,),
            ).fetchone()
            if row is None:
                return None
            item_rows = conn.execute(
                "SELECT order_id, story_id FROM order_items WHERE order_id = ? ORDER BY id ASC",
                (order_id,),
            ).fetchall()
        finally:
            conn.close()
        return Order(
            id=row["id"],
            user_id=row["user_id"],
            status=row["status"],
            fulfillment_status=row["fulfillment_status"],
            fulfilled_at=_parse(row["fulfilled_at"]),
            items=[OrderItem(order_id=item["order_id"], story_id=item["story_id"]) for item in item_rows],
        )

    def create(self, order: Order, story_ids: Iterable[str]) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO orders (id, user_id, status, fulfillment_status, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (order.id, order.user_id, order.status, order.fulfillment_status, _iso(utcnow())),
            )
            conn.executemany(
                "INSERT INTO order_items (order_id, story_id) VALUES (?, ?)",
                [(order.id, story_id) for story_id in story_ids],
            )

    def set_status(self, order_id: str, status: str) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE orders SET status = ?, updated_at = ? WHERE id = ?",
                (status, _iso(utcnow()), order_id),
            )

    def mark_fulfilled(self, order_id: str) -> bool:
        """Flip the order to the terminal fulfillment status; no-op when already there."""
        now = _iso(utcnow())
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE orders SET fulfillment_status = ?, fulfilled_at = ?, updated_at = ?
                WHERE id = ? AND (fulfillment_status IS NULL OR fulfillment_status != ?)
                """,
                (FULFILLMENT_COMPLETED, now, now, order_id, FULFILLMENT_COMPLETED),
            )
            return cursor.rowcount == 1

    def pending_fulfillment(self, *, limit: int | None = None) -> list[str]:
        """Ids of paid orders whose fulfillment has not completed, oldest first."""
        query = """
            SELECT id FROM orders
            WHERE status = ? AND (fulfillment_status IS NULL OR fulfillment_status != ?)
            ORDER BY updated_at ASC, id ASC
        """
        params: list[Any] = [ORDER_PAID, FULFILLMENT_COMPLETED]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [row["id"] for row in rows]
