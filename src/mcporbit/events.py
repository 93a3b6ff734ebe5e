# ABOUTME: In-process event channel for drift, info and error notifications
# ABOUTME: Subscribers are plain callables; a failing one never stops delivery
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Union

from mcporbit.models import ClientType, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriftEvent:
    """A client file's MCP block changed outside mcporbit."""
    snapshot_id: str
    file_path: Path
    client: ClientType
    detected_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class InfoEvent:
    message: str


@dataclass(frozen=True)
class ErrorEvent:
    message: str


Event = Union[DriftEvent, InfoEvent, ErrorEvent]
Subscriber = Callable[[Event], None]


class EventBus:
    """Synchronous fan-out to subscribers, in subscription order."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber failed on {type(event).__name__}: {e}")
