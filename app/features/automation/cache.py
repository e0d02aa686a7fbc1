"""
Redis cache for a user's enabled rule set.

Every failure falls through to the store: a missing or unreadable cache
entry is treated as a miss.
"""

import json
from datetime import datetime

from app.config import settings
from app.features.automation.domain import AutomationRule
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "automation:rules:"


class RuleCache:
    def __init__(self, client: FastRedisClient | None = None, ttl_seconds: int | None = None):
        self.client = client or fast_redis
        self.ttl_seconds = ttl_seconds or settings.RULE_CACHE_TTL_SECONDS

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{CACHE_KEY_PREFIX}{user_id}"

    async def get(self, user_id: str) -> list[AutomationRule] | None:
        try:
            raw = await self.client.get(self._key(user_id))
            if raw is None:
                return None

            rules = []
            for data in json.loads(raw):
                created = data.get("created_at")
                executed = data.get("last_executed_at")
                data["created_at"] = datetime.fromisoformat(created) if created else None
                data["last_executed_at"] = datetime.fromisoformat(executed) if executed else None
                rules.append(AutomationRule.from_row(data))
            return rules

        except Exception as e:
            logger.warning("Rule cache read failed, using store", user_id=user_id, error=str(e))
            return None

    async def set(self, user_id: str, rules: list[AutomationRule]) -> None:
        try:
            payload = json.dumps([rule.to_dict() for rule in rules])
            await self.client.set_with_ttl(self._key(user_id), payload, self.ttl_seconds)
        except Exception as e:
            logger.warning("Rule cache write failed", user_id=user_id, error=str(e))

    async def invalidate(self, user_id: str) -> None:
        try:
            await self.client.delete(self._key(user_id))
        except Exception as e:
            logger.warning("Rule cache invalidation failed", user_id=user_id, error=str(e))
