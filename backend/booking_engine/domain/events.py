from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

from ..models import Appointment, Calendar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppointmentCreated:
    appointment: Appointment
    calendar: Calendar


@dataclass(frozen=True)
class AppointmentConfirmed:
    appointment: Appointment
    calendar: Calendar


@dataclass(frozen=True)
class AppointmentCancelled:
    appointment: Appointment
    calendar: Calendar
    reason: Optional[str] = None
    cancelled_by: Optional[int] = None


LifecycleEvent = Union[AppointmentCreated, AppointmentConfirmed, AppointmentCancelled]
Subscriber = Callable[[LifecycleEvent], None]


class EventPublisher(Protocol):
    def publish(self, event: LifecycleEvent) -> None: ...


class EventBus:
    """Explicit publish/subscribe port owned by the application instance.

    Delivery is fire-and-forget: a failing subscriber is logged and skipped so
    that notifications can never change the outcome of a booking.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def publish(self, event: LifecycleEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception("subscriber %r failed for %s", subscriber, type(event).__name__)


class EventOutbox:
    """Holds events raised inside a transaction until it has committed."""

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    def publish(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    def release(self, publisher: EventPublisher) -> None:
        pending, self.events = self.events, []
        for event in pending:
            publisher.publish(event)


class LoggingNotificationDispatcher:
    """Default subscriber: records what the mail collaborator would send."""

    def __init__(self, logger_name: str = "booking_engine.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    def __call__(self, event: LifecycleEvent) -> None:
        self._logger.info(
            "%s appointment=%s calendar=%s status=%s",
            type(event).__name__,
            event.appointment.id,
            event.calendar.id,
            event.appointment.status,
        )
