from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol

from ..domain.chat_models import ChatErrorEvent, Notification
from ..infrastructure.events import publish_event
from ..observability.metrics import CHAT_ERRORS


LOG = logging.getLogger("medassist.chat")


class ErrorReporter(Protocol):
    def report(self, event: ChatErrorEvent) -> None: ...


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingErrorReporter:
    """Default reporter: log, count, and publish each recovered failure."""

    def __init__(self, publish: Optional[Callable[[str, dict], bool]] = None) -> None:
        self._publish = publish or publish_event

    def report(self, event: ChatErrorEvent) -> None:
        payload = event.to_payload()
        LOG.warning(event.kind.value, extra={"chat_error": payload})
        CHAT_ERRORS.labels(kind=event.kind.value).inc()
        self._publish(event.kind.value, payload)


class LoggingNotifier:
    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.variant == "destructive" else logging.INFO
        LOG.log(level, "%s: %s", notification.title, notification.description)


class RecordingReporter:
    """Collects events and notifications in memory (console client, tests)."""

    def __init__(self) -> None:
        self.events: List[ChatErrorEvent] = []
        self.notifications: List[Notification] = []

    def report(self, event: ChatErrorEvent) -> None:
        self.events.append(event)

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def drain_notifications(self) -> List[Notification]:
        out, self.notifications = self.notifications, []
        return out
