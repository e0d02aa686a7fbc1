"""
Persistence for digests and digest preferences.
"""

from datetime import date

from app.db.helpers import DatabaseError, as_json, fetch_all, fetch_one
from app.features.digest.domain import Digest, DigestPreferences, WindowType
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DigestRepository:
    DIGEST_COLUMNS = "id, user_id, window_type, window_key, buckets, summary, generated_at"

    @classmethod
    async def upsert_digest(cls, digest: Digest) -> Digest:
        """One row per (user_id, window_type, window_key); regeneration overwrites."""
        row = await fetch_one(
            f"""
            INSERT INTO digests (user_id, window_type, window_key, buckets, summary, generated_at)
            VALUES (%s, %s, %s, %s, %s, COALESCE(%s, NOW()))
            ON CONFLICT (user_id, window_type, window_key) DO UPDATE SET
                buckets = EXCLUDED.buckets,
                summary = EXCLUDED.summary,
                generated_at = EXCLUDED.generated_at
            RETURNING {cls.DIGEST_COLUMNS}
            """,
            (
                digest.user_id,
                digest.window_type.value,
                digest.window_key,
                as_json(digest.buckets),
                as_json(digest.summary),
                digest.generated_at,
            ),
        )
        if not row:
            raise DatabaseError("Digest upsert returned no row", operation="upsert_digest")
        return Digest.from_row(row)

    @classmethod
    async def get_digest(cls, user_id: str, window_type: WindowType, key: date) -> Digest | None:
        row = await fetch_one(
            f"""
            SELECT {cls.DIGEST_COLUMNS}
            FROM digests
            WHERE user_id = %s AND window_type = %s AND window_key = %s
            """,
            (user_id, WindowType(window_type).value, key),
        )
        return Digest.from_row(row) if row else None

    @classmethod
    async def list_history(cls, user_id: str, limit: int = 10) -> list[Digest]:
        rows = await fetch_all(
            f"""
            SELECT {cls.DIGEST_COLUMNS}
            FROM digests
            WHERE user_id = %s
            ORDER BY generated_at DESC
            LIMIT %s
            """,
            (user_id, limit),
        )
        return [Digest.from_row(row) for row in rows]

    @staticmethod
    async def get_preferences(user_id: str) -> DigestPreferences:
        row = await fetch_one(
            "SELECT enabled, include_sources FROM digest_preferences WHERE user_id = %s",
            (user_id,),
        )
        if not row:
            return DigestPreferences(user_id=user_id)
        return DigestPreferences(
            user_id=user_id,
            enabled=bool(row["enabled"]),
            include_sources=list(row["include_sources"] or []),
        )

    @staticmethod
    async def upsert_preferences(preferences: DigestPreferences) -> DigestPreferences:
        row = await fetch_one(
            """
            INSERT INTO digest_preferences (user_id, enabled, include_sources)
            VALUES (%s, %s, %s)
            ON CONFLICT (user_id) DO UPDATE SET
                enabled = EXCLUDED.enabled,
                include_sources = EXCLUDED.include_sources,
                updated_at = NOW()
            RETURNING user_id, enabled, include_sources
            """,
            (preferences.user_id, preferences.enabled, preferences.include_sources),
        )
        if not row:
            raise DatabaseError("Preferences upsert returned no row", operation="upsert_preferences")
        logger.info("Digest preferences updated", user_id=preferences.user_id, enabled=row["enabled"])
        return DigestPreferences(
            user_id=row["user_id"],
            enabled=bool(row["enabled"]),
            include_sources=list(row["include_sources"] or []),
        )
