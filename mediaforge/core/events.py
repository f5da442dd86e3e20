from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List

from mediaforge.conversions.models import ConversionDefinition, MediaDescriptor

from .logging import get_logger


@dataclass(frozen=True, slots=True)
class ConversionCompleted:
    media: MediaDescriptor
    conversion: ConversionDefinition


Listener = Callable[[ConversionCompleted], None]


class EventNotifier(ABC):
    @abstractmethod
    def publish(self, event: ConversionCompleted) -> None: ...


class LocalEventNotifier(EventNotifier):
    """Delivers events synchronously to in-process listeners."""

    def __init__(self, listeners: List[Listener] | None = None):
        self._listeners: List[Listener] = list(listeners or [])
        self.logger = get_logger(component="event_notifier")

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(self, event: ConversionCompleted) -> None:
        self.logger.info(
            "conversion_completed",
            media_id=event.media.id,
            conversion=event.conversion.name,
        )
        for listener in self._listeners:
            listener(event)


__all__ = ["ConversionCompleted", "EventNotifier", "LocalEventNotifier", "Listener"]
