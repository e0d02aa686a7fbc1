"""
Source adapter contract and registry.

Provider access (OAuth, fetch, parsing) lives outside this service; an
adapter only has to hand back recent raw items for a user.
"""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import RawItem, Source

logger = get_logger(__name__)


@runtime_checkable
class SourceAdapter(Protocol):
    source: Source

    async def fetch_recent(self, user_id: str, window_minutes: int) -> Sequence[RawItem]: ...


class SourceAdapterRegistry:
    def __init__(self):
        self._adapters: dict[Source, SourceAdapter] = {}

    def register(self, adapter: SourceAdapter) -> None:
        if not isinstance(adapter, SourceAdapter):
            raise TypeError(f"{type(adapter).__name__} does not implement fetch_recent")
        source = Source(adapter.source)
        if source in self._adapters:
            logger.warning("Replacing source adapter", source=source.value)
        self._adapters[source] = adapter
        logger.info("Source adapter registered", source=source.value, adapter=type(adapter).__name__)

    def unregister(self, source: Source) -> None:
        self._adapters.pop(Source(source), None)

    def get(self, source: Source) -> SourceAdapter | None:
        return self._adapters.get(Source(source))

    def sources(self) -> list[Source]:
        return list(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)


source_adapters = SourceAdapterRegistry()
