"""In-process domain events."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionDeduped:
    """An ingestion record resolved to an existing canonical knowledge record."""

    ingestion_record_id: str
    reason: str
    canonical_id: str


class EventBus:
    """Synchronous publish/subscribe keyed by event class.

    Subscriber exceptions are logged and do not reach the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[object], None]]] = defaultdict(list)
        self.emitted: list[object] = []

    def subscribe(self, event_type: type, handler: Callable[[object], None]) -> None:
        self._handlers[event_type].append(handler)

    def emit(self, event: object) -> None:
        self.emitted.append(event)
        for handler in self._handlers.get(type(event), []):
            try:
                handler(event)
            except Exception:
                logger.exception("events.handler_failed event=%s", type(event).__name__)
