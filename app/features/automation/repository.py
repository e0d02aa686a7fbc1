"""
Persistence for automation rules, rule executions and pending outbound actions.
"""

from typing import Any

from app.db.helpers import DatabaseError, as_json, execute_query, fetch_all, fetch_one, fetch_val
from app.features.automation.domain import AutomationRule
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

UPDATABLE_COLUMNS = (
    "name",
    "description",
    "trigger_type",
    "trigger_config",
    "action_type",
    "action_config",
    "enabled",
    "priority",
)
JSON_COLUMNS = {"trigger_config", "action_config"}


class RuleNotFoundError(Exception):
    """Rule does not exist or is owned by another user."""

    def __init__(self, rule_id: str, recoverable: bool = False):
        super().__init__(f"Automation rule {rule_id} not found")
        self.rule_id = rule_id
        self.recoverable = recoverable


class RuleRepository:
    RULE_COLUMNS = """
        id, user_id, name, description, trigger_type, trigger_config,
        action_type, action_config, enabled, priority, execution_count,
        last_executed_at, created_at
    """

    @classmethod
    async def list_rules(cls, user_id: str, *, enabled_only: bool = False) -> list[AutomationRule]:
        query = f"SELECT {cls.RULE_COLUMNS} FROM automation_rules WHERE user_id = %s"
        if enabled_only:
            query += " AND enabled"
        query += " ORDER BY priority, created_at, id"
        rows = await fetch_all(query, (user_id,))
        return [AutomationRule.from_row(row) for row in rows]

    @classmethod
    async def get_rule(cls, user_id: str, rule_id: str) -> AutomationRule | None:
        row = await fetch_one(
            f"SELECT {cls.RULE_COLUMNS} FROM automation_rules WHERE id = %s AND user_id = %s",
            (rule_id, user_id),
        )
        return AutomationRule.from_row(row) if row else None

    @classmethod
    async def create_rule(cls, user_id: str, data: dict[str, Any]) -> AutomationRule:
        row = await fetch_one(
            f"""
            INSERT INTO automation_rules (
                user_id, name, description, trigger_type, trigger_config,
                action_type, action_config, enabled, priority
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {cls.RULE_COLUMNS}
            """,
            (
                user_id,
                data["name"],
                data.get("description"),
                data["trigger_type"],
                as_json(data.get("trigger_config") or {}),
                data["action_type"],
                as_json(data.get("action_config") or {}),
                data.get("enabled", True),
                data.get("priority", 100),
            ),
        )
        if not row:
            raise DatabaseError("Rule insert returned no row", operation="create_rule")

        rule = AutomationRule.from_row(row)
        logger.info("Automation rule created", user_id=user_id, rule_id=rule.id, name=rule.name)
        return rule

    @classmethod
    async def update_rule(
        cls, user_id: str, rule_id: str, changes: dict[str, Any]
    ) -> AutomationRule:
        """Apply a partial update to a rule owned by user_id."""
        fields = [name for name in UPDATABLE_COLUMNS if name in changes]
        if not fields:
            rule = await cls.get_rule(user_id, rule_id)
            if rule is None:
                raise RuleNotFoundError(rule_id)
            return rule

        assignments = ", ".join(f"{name} = %s" for name in fields)
        params = [
            as_json(changes[name]) if name in JSON_COLUMNS else changes[name] for name in fields
        ]
        row = await fetch_one(
            f"""
            UPDATE automation_rules
            SET {assignments}, updated_at = NOW()
            WHERE id = %s AND user_id = %s
            RETURNING {cls.RULE_COLUMNS}
            """,
            (*params, rule_id, user_id),
        )
        if not row:
            raise RuleNotFoundError(rule_id)

        logger.info("Automation rule updated", user_id=user_id, rule_id=rule_id, fields=fields)
        return AutomationRule.from_row(row)

    @staticmethod
    async def delete_rule(user_id: str, rule_id: str) -> bool:
        deleted = await execute_query(
            "DELETE FROM automation_rules WHERE id = %s AND user_id = %s",
            (rule_id, user_id),
        )
        if deleted:
            logger.info("Automation rule deleted", user_id=user_id, rule_id=rule_id)
        return deleted > 0

    @staticmethod
    async def record_execution(job_id: str, rule_id: str, item_id: str | None) -> bool:
        """
        Count one successful execution of a rule.

        Keyed by job id, so replaying the same job never increments
        execution_count twice.

        Returns:
            True if the count was incremented by this call
        """
        updated = await execute_query(
            """
            WITH inserted AS (
                INSERT INTO rule_executions (job_id, rule_id, item_id)
                SELECT %s, id, %s FROM automation_rules WHERE id = %s
                ON CONFLICT (job_id) DO NOTHING
                RETURNING rule_id
            )
            UPDATE automation_rules
            SET execution_count = execution_count + 1,
                last_executed_at = NOW()
            WHERE id IN (SELECT rule_id FROM inserted)
            """,
            (job_id, item_id, rule_id),
        )
        return updated > 0

    @staticmethod
    async def record_missing_executions(limit: int = 500) -> int:
        """
        Count succeeded rule_action jobs that have no rule_executions row.

        Shares the job-id key with record_execution, so a job is never
        counted by both.
        """
        counted = await fetch_val(
            """
            WITH missing AS (
                SELECT j.id AS job_id,
                       r.id AS rule_id,
                       (j.payload->>'item_id')::uuid AS item_id
                FROM jobs j
                JOIN automation_rules r ON r.id = (j.payload->>'rule_id')::uuid
                LEFT JOIN rule_executions e ON e.job_id = j.id
                WHERE j.type = 'rule_action'
                  AND j.status = 'succeeded'
                  AND e.job_id IS NULL
                ORDER BY j.finished_at
                LIMIT %s
            ),
            inserted AS (
                INSERT INTO rule_executions (job_id, rule_id, item_id)
                SELECT job_id, rule_id, item_id FROM missing
                ON CONFLICT (job_id) DO NOTHING
                RETURNING rule_id
            ),
            counted AS (
                UPDATE automation_rules r
                SET execution_count = r.execution_count + c.n,
                    last_executed_at = NOW()
                FROM (SELECT rule_id, COUNT(*) AS n FROM inserted GROUP BY rule_id) c
                WHERE r.id = c.rule_id
                RETURNING c.n
            )
            SELECT COALESCE(SUM(n), 0)::int FROM counted
            """,
            (limit,),
        )
        return counted or 0

    @staticmethod
    async def record_pending_action(
        user_id: str, item_id: str, rule_id: str, action_type: str, action_data: dict[str, Any]
    ) -> bool:
        """Queue an outbound action (forward/notify) for the delivery layer."""
        inserted = await execute_query(
            """
            INSERT INTO pending_actions (user_id, item_id, rule_id, action_type, action_data)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (rule_id, item_id, action_type) DO NOTHING
            """,
            (user_id, item_id, rule_id, action_type, as_json(action_data)),
        )
        return inserted > 0
