"""
Persistence for normalized items.

Items are keyed by (user_id, source, external_id); every write is an
upsert on that key so overlapping ingestion passes converge.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime

from app.db.helpers import DatabaseError, as_json, execute_query, fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import Item

logger = get_logger(__name__)

BULK_ACTION_COLUMNS = {
    "archive": ("is_archived", "TRUE"),
    "mark_read": ("is_unread", "FALSE"),
    "unsubscribe_request": ("unsubscribe_requested", "TRUE"),
}


class ItemRepository:
    """Item reads and upserts shared by every feature slice."""

    ITEM_COLUMNS = """
        id, user_id, source, external_id, sender, title, body, category,
        is_important, is_starred, is_unread, is_archived, labels,
        received_at, created_at
    """

    @classmethod
    async def upsert_item(cls, item: Item) -> Item:
        """
        Insert or refresh an item; returns the stored row.

        Labels are merged rather than replaced so labels added by rule
        actions survive re-ingestion.
        """
        query = f"""
            INSERT INTO items (
                id, user_id, source, external_id, sender, title, body,
                is_important, is_starred, is_unread, labels, received_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, source, external_id) DO UPDATE SET
                sender = EXCLUDED.sender,
                title = EXCLUDED.title,
                body = EXCLUDED.body,
                is_important = EXCLUDED.is_important,
                is_starred = EXCLUDED.is_starred,
                is_unread = EXCLUDED.is_unread,
                labels = items.labels || ARRAY(
                    SELECT label FROM unnest(EXCLUDED.labels) AS label
                    WHERE NOT label = ANY(items.labels)
                ),
                received_at = COALESCE(EXCLUDED.received_at, items.received_at),
                updated_at = NOW()
            RETURNING {cls.ITEM_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                item.id,
                item.user_id,
                item.source.value,
                item.external_id,
                item.sender,
                item.title,
                item.body,
                item.is_important,
                item.is_starred,
                item.is_unread,
                item.labels,
                item.received_at,
            ),
        )
        if not row:
            raise DatabaseError("Item upsert returned no row", operation="upsert_item")
        return Item.from_row(row)

    @classmethod
    async def get_item(cls, user_id: str, item_id: str) -> Item | None:
        row = await fetch_one(
            f"SELECT {cls.ITEM_COLUMNS} FROM items WHERE user_id = %s AND id = %s",
            (user_id, item_id),
        )
        return Item.from_row(row) if row else None

    @staticmethod
    async def list_scored_items(
        user_id: str,
        start: datetime,
        end: datetime,
        *,
        sources: Sequence[str] | None = None,
        tiers: Sequence[str] | None = None,
    ) -> list[dict]:
        """
        Items created inside [start, end) joined with their current score.

        Archived items are excluded. Rows carry item columns plus
        final_score and processing_tier.
        """
        query = """
            SELECT i.id, i.source, i.external_id, i.sender, i.title, i.body,
                   i.category, i.created_at, i.received_at,
                   s.final_score, s.processing_tier
            FROM items i
            JOIN item_scores s ON s.user_id = i.user_id AND s.item_id = i.id
            WHERE i.user_id = %s
              AND i.created_at >= %s
              AND i.created_at < %s
              AND NOT i.is_archived
        """
        params: list = [user_id, start, end]
        if sources:
            query += " AND i.source = ANY(%s)"
            params.append(list(sources))
        if tiers:
            query += " AND s.processing_tier = ANY(%s)"
            params.append(list(tiers))
        query += " ORDER BY s.final_score DESC, i.created_at DESC, i.id"
        return await fetch_all(query, tuple(params))

    @classmethod
    async def find_by_external_ids(
        cls, user_id: str, refs: Iterable[tuple[str, str]]
    ) -> list[Item]:
        """Resolve (source, external_id) references against current item state."""
        refs = list(refs)
        if not refs:
            return []
        rows = await fetch_all(
            f"""
            SELECT {cls.ITEM_COLUMNS}
            FROM items
            WHERE user_id = %s
              AND (source, external_id) IN (
                  SELECT * FROM UNNEST(%s::text[], %s::text[])
              )
            """,
            (user_id, [source for source, _ in refs], [ext for _, ext in refs]),
        )
        return [Item.from_row(row) for row in rows]

    @staticmethod
    async def apply_bulk_action(user_id: str, item_ids: Sequence[str], action: str) -> int:
        """Apply a weekly-digest bulk action; returns the number of rows changed."""
        if action not in BULK_ACTION_COLUMNS or not item_ids:
            return 0
        column, target = BULK_ACTION_COLUMNS[action]
        query = f"""
            UPDATE items
            SET {column} = {target}, updated_at = NOW()
            WHERE user_id = %s
              AND id = ANY(%s::uuid[])
              AND {column} IS DISTINCT FROM {target}
        """
        updated = await execute_query(query, (user_id, list(item_ids)))
        logger.info("Bulk item action applied", user_id=user_id, action=action, updated=updated)
        return updated

    @staticmethod
    async def add_label(user_id: str, item_id: str, label: str) -> bool:
        updated = await execute_query(
            """
            UPDATE items
            SET labels = array_append(labels, %s), updated_at = NOW()
            WHERE user_id = %s AND id = %s AND NOT (%s = ANY(labels))
            """,
            (label, user_id, item_id, label),
        )
        return updated > 0

    @staticmethod
    async def archive_item(user_id: str, item_id: str) -> bool:
        updated = await execute_query(
            """
            UPDATE items
            SET is_archived = TRUE, updated_at = NOW()
            WHERE user_id = %s AND id = %s AND NOT is_archived
            """,
            (user_id, item_id),
        )
        return updated > 0

    @staticmethod
    async def save_enrichment(
        user_id: str, item_id: str, summary: str | None, smart_replies: list[str]
    ) -> None:
        await execute_query(
            """
            UPDATE items
            SET summary = %s, smart_replies = %s, enriched_at = NOW(), updated_at = NOW()
            WHERE user_id = %s AND id = %s
            """,
            (summary, as_json(smart_replies), user_id, item_id),
        )

    @staticmethod
    async def list_user_ids() -> list[str]:
        rows = await fetch_all("SELECT DISTINCT user_id FROM items ORDER BY user_id")
        return [row["user_id"] for row in rows]
