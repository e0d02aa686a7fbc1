"""
Text completion client used for item enrichment.

Wraps the OpenAI chat completions API for the two enrichment calls the
pipeline needs: a short summary and a handful of suggested replies.
The client is created on first use so importing the app never needs
an API key.
"""

import json
import re
from typing import Any

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SUMMARY_MAX_TOKENS = 150
REPLIES_MAX_TOKENS = 300
PROMPT_TEXT_LIMIT = 4000

_LIST_LINE = re.compile(r"^\s*(?:\d+[.)]|[-*])\s+(.+?)\s*$")


class CompletionServiceError(Exception):
    """Raised when a completion cannot be produced."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.api_error = api_error
        self.recoverable = recoverable


def parse_replies(raw: str, limit: int) -> list[str]:
    """
    Extract reply suggestions from a model response.

    Accepts a JSON array, a JSON object with a "replies" array, or a
    plain numbered/bulleted list.
    """
    text = (raw or "").strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None

    if isinstance(parsed, dict):
        parsed = parsed.get("replies")
    if isinstance(parsed, list):
        replies = [str(r).strip() for r in parsed if str(r).strip()]
    else:
        replies = [m.group(1) for line in text.splitlines() if (m := _LIST_LINE.match(line))]

    return replies[:limit]


class CompletionService:
    def __init__(self, client: AsyncOpenAI | None = None, model: str | None = None):
        self._client = client
        self.model = model or settings.OPENAI_MODEL

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise CompletionServiceError("OPENAI_API_KEY not configured", recoverable=False)
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.COMPLETION_TIMEOUT_SECONDS,
                max_retries=0,
            )
            logger.info(
                "OpenAI client initialized",
                model=self.model,
                timeout=settings.COMPLETION_TIMEOUT_SECONDS,
            )
        return self._client

    async def summarize(self, text: str) -> str:
        content = await self._complete(
            "Summarize the message in one or two plain sentences. Return only the summary.",
            text[:PROMPT_TEXT_LIMIT],
            max_tokens=SUMMARY_MAX_TOKENS,
        )
        return content.strip()

    async def suggest_replies(self, context: str, count: int | None = None) -> list[str]:
        count = count or settings.SMART_REPLY_COUNT
        content = await self._complete(
            f"Suggest {count} short, distinct replies to the message. "
            'Respond with JSON: {"replies": ["...", "..."]}.',
            context[:PROMPT_TEXT_LIMIT],
            max_tokens=REPLIES_MAX_TOKENS,
            json_mode=True,
        )
        replies = parse_replies(content, count)
        if not replies:
            logger.warning("No replies parsed from completion", response_length=len(content))
        return replies

    async def _complete(
        self, instructions: str, text: str, *, max_tokens: int, json_mode: bool = False
    ) -> str:
        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": instructions},
                    {"role": "user", "content": text},
                ],
                max_tokens=max_tokens,
                temperature=0.3,
                **kwargs,
            )
        except (openai.RateLimitError, openai.APIConnectionError) as e:
            # APITimeoutError is an APIConnectionError
            logger.warning("Completion temporarily unavailable", error=str(e), error_type=type(e).__name__)
            raise CompletionServiceError(
                "Completion service temporarily unavailable", api_error=str(e), recoverable=True
            ) from e
        except openai.APIStatusError as e:
            recoverable = e.status_code >= 500
            logger.warning("Completion request rejected", status_code=e.status_code, error=str(e))
            raise CompletionServiceError(
                f"Completion request failed with status {e.status_code}",
                api_error=str(e),
                recoverable=recoverable,
            ) from e
        except openai.APIError as e:
            logger.warning("Completion API error", error=str(e))
            raise CompletionServiceError("Completion API error", api_error=str(e)) from e

        if not response.choices or not response.choices[0].message.content:
            raise CompletionServiceError("Empty completion response", recoverable=False)

        content = response.choices[0].message.content
        logger.debug(
            "Completion received",
            model=self.model,
            response_length=len(content),
            usage_tokens=response.usage.total_tokens if response.usage else 0,
        )
        return content


completion_service = CompletionService()
