"""
Persistence for user actions and learned sender/pattern state.

Learning writes for one action happen on a single transaction-scoped
connection; the `learning_applied_actions` ledger row inserted in that
transaction is what makes each action count exactly once.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

import psycopg

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, fetch_val
from app.db.pool import get_db_transaction
from app.features.learning.domain import SenderState, UserAction, UserActionRecord
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class LearningRepository:
    ACTION_COLUMNS = (
        "id, user_id, item_id, action, item_score, sender_email, subject, patterns, occurred_at"
    )

    @staticmethod
    @asynccontextmanager
    async def transaction() -> AsyncIterator[psycopg.AsyncConnection]:
        try:
            async with await get_db_transaction() as conn:
                yield conn
        except psycopg.Error as e:
            logger.error("Learning transaction failed", error=str(e))
            raise DatabaseError(f"Transaction failed: {e}", operation="learning_transaction") from e

    @classmethod
    async def insert_action(cls, record: UserActionRecord) -> UserActionRecord:
        row = await fetch_one(
            f"""
            INSERT INTO user_actions
                (user_id, item_id, action, item_score, sender_email, subject, patterns, occurred_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {cls.ACTION_COLUMNS}
            """,
            (
                record.user_id,
                record.item_id,
                record.action.value,
                record.item_score,
                record.sender_email,
                record.subject,
                list(record.patterns),
                record.occurred_at,
            ),
        )
        if not row:
            raise DatabaseError("Action insert returned no row", operation="insert_action")
        return UserActionRecord.from_row(row)

    @classmethod
    async def list_actions(
        cls,
        user_id: str,
        *,
        item_id: str | None = None,
        action: UserAction | None = None,
        limit: int = 50,
    ) -> list[UserActionRecord]:
        conditions = ["user_id = %s"]
        params: list = [user_id]
        if item_id:
            conditions.append("item_id = %s")
            params.append(item_id)
        if action:
            conditions.append("action = %s")
            params.append(UserAction(action).value)
        params.append(limit)
        where = " AND ".join(conditions)

        rows = await fetch_all(
            f"""
            SELECT {cls.ACTION_COLUMNS}
            FROM user_actions
            WHERE {where}
            ORDER BY occurred_at DESC, id
            LIMIT %s
            """,
            tuple(params),
        )
        return [UserActionRecord.from_row(row) for row in rows]

    @classmethod
    async def list_unapplied_actions(cls, user_id: str, limit: int) -> list[UserActionRecord]:
        """Most recent actions whose influence has not been applied yet, oldest first."""
        columns = ", ".join(f"a.{column}" for column in cls.ACTION_COLUMNS.split(", "))
        rows = await fetch_all(
            f"""
            SELECT * FROM (
                SELECT {columns}
                FROM user_actions a
                LEFT JOIN learning_applied_actions l ON l.action_id = a.id
                WHERE a.user_id = %s AND l.action_id IS NULL
                ORDER BY a.occurred_at DESC
                LIMIT %s
            ) recent
            ORDER BY occurred_at, id
            """,
            (user_id, limit),
        )
        return [UserActionRecord.from_row(row) for row in rows]

    @staticmethod
    async def mark_applied(
        action_id: str, user_id: str, *, connection: psycopg.AsyncConnection | None = None
    ) -> bool:
        """Claim an action for learning; False when it was already applied."""
        inserted = await execute_query(
            """
            INSERT INTO learning_applied_actions (action_id, user_id)
            VALUES (%s, %s)
            ON CONFLICT (action_id) DO NOTHING
            """,
            (action_id, user_id),
            connection=connection,
        )
        return inserted == 1

    @staticmethod
    async def get_sender(
        user_id: str, sender_email: str, *, connection: psycopg.AsyncConnection | None = None
    ) -> SenderState | None:
        row = await fetch_one(
            """
            SELECT sender_email, vip_score, confidence_score, interaction_count, score_boost
            FROM vip_senders
            WHERE user_id = %s AND sender_email = %s
            FOR UPDATE
            """,
            (user_id, sender_email),
            connection=connection,
        )
        if not row:
            return None
        return SenderState(
            sender_email=row["sender_email"],
            vip_score=float(row["vip_score"]),
            confidence=float(row["confidence_score"]),
            interaction_count=int(row["interaction_count"]),
            score_boost=int(row["score_boost"] or 0),
        )

    @staticmethod
    async def upsert_sender(
        user_id: str,
        state: SenderState,
        interacted_at: datetime,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> None:
        await execute_query(
            """
            INSERT INTO vip_senders
                (user_id, sender_email, vip_score, confidence_score, interaction_count, last_interaction)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, sender_email) DO UPDATE SET
                vip_score = EXCLUDED.vip_score,
                confidence_score = EXCLUDED.confidence_score,
                interaction_count = EXCLUDED.interaction_count,
                last_interaction = GREATEST(vip_senders.last_interaction, EXCLUDED.last_interaction)
            """,
            (
                user_id,
                state.sender_email,
                state.vip_score,
                state.confidence,
                state.interaction_count,
                interacted_at,
            ),
            connection=connection,
        )

    @staticmethod
    async def get_pattern_weight(
        user_id: str, pattern: str, *, connection: psycopg.AsyncConnection | None = None
    ) -> float:
        weight = await fetch_val(
            """
            SELECT weight FROM pattern_weights
            WHERE user_id = %s AND pattern_name = %s
            FOR UPDATE
            """,
            (user_id, pattern),
            connection=connection,
        )
        return float(weight) if weight is not None else 1.0

    @staticmethod
    async def upsert_pattern_weight(
        user_id: str,
        pattern: str,
        weight: float,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> None:
        await execute_query(
            """
            INSERT INTO pattern_weights (user_id, pattern_name, weight, sample_size)
            VALUES (%s, %s, %s, 1)
            ON CONFLICT (user_id, pattern_name) DO UPDATE SET
                weight = EXCLUDED.weight,
                sample_size = pattern_weights.sample_size + 1,
                updated_at = NOW()
            """,
            (user_id, pattern, weight),
            connection=connection,
        )

    @staticmethod
    async def bump_learning_state(
        user_id: str, *, connection: psycopg.AsyncConnection | None = None
    ) -> None:
        """Advance the version that scoring contexts are stamped with."""
        await execute_query(
            """
            INSERT INTO learning_state (user_id, version, processed_actions)
            VALUES (%s, 1, 1)
            ON CONFLICT (user_id) DO UPDATE SET
                version = learning_state.version + 1,
                processed_actions = learning_state.processed_actions + 1,
                updated_at = NOW()
            """,
            (user_id,),
            connection=connection,
        )

    @staticmethod
    async def count_actions(user_id: str) -> dict[str, int]:
        rows = await fetch_all(
            "SELECT action, COUNT(*) AS total FROM user_actions WHERE user_id = %s GROUP BY action",
            (user_id,),
        )
        counts = {action.value: 0 for action in UserAction}
        counts.update({row["action"]: int(row["total"]) for row in rows})
        return counts

    @staticmethod
    async def recent_scored_actions(user_id: str, limit: int = 1000) -> list[dict]:
        return await fetch_all(
            """
            SELECT action, item_score
            FROM user_actions
            WHERE user_id = %s AND item_score IS NOT NULL
            ORDER BY occurred_at DESC
            LIMIT %s
            """,
            (user_id, limit),
        )

    @staticmethod
    async def pattern_effectiveness(user_id: str) -> dict[str, float]:
        """(positive − negative) / total per pattern over all recorded actions."""
        rows = await fetch_all(
            """
            SELECT pattern,
                   SUM(CASE WHEN action IN ('star', 'reply') THEN 1
                            WHEN action IN ('archive', 'delete', 'unread') THEN -1
                            ELSE 0 END)::float / COUNT(*) AS effectiveness
            FROM user_actions, UNNEST(patterns) AS pattern
            WHERE user_id = %s
            GROUP BY pattern
            """,
            (user_id,),
        )
        return {row["pattern"]: float(row["effectiveness"]) for row in rows}

    @staticmethod
    async def learned_state(user_id: str) -> dict:
        weights = await fetch_all(
            "SELECT pattern_name, weight FROM pattern_weights WHERE user_id = %s ORDER BY pattern_name",
            (user_id,),
        )
        vip_count = await fetch_val(
            "SELECT COUNT(*) FROM vip_senders WHERE user_id = %s AND vip_score >= 0.7",
            (user_id,),
        )
        state = await fetch_one(
            "SELECT version, processed_actions FROM learning_state WHERE user_id = %s",
            (user_id,),
        )
        return {
            "pattern_weights": {row["pattern_name"]: float(row["weight"]) for row in weights},
            "vip_sender_count": int(vip_count or 0),
            "version": state["version"] if state else 0,
            "processed_actions": state["processed_actions"] if state else 0,
        }
