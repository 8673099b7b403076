"""Audit event sinks and the persisted audit trail.

Services build an ``AuditEntry`` for every state transition and hand it to
an ``EventSink`` once the surrounding database transaction commits. Sinks
are fire-and-forget: a full queue or a failing handler is logged and the
command that produced the event still succeeds.
"""

from __future__ import annotations

import queue
import threading
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable, Iterable
from typing import Any
from uuid import UUID

from business_ledger.domain.audit import (
    AuditAction,
    AuditEntityType,
    AuditEntry,
    AuditLogSummary,
)
from business_ledger.domain.value_objects import CommandContext
from business_ledger.logging_config import get_logger
from business_ledger.repositories.interfaces import AuditLogRepository, UnitOfWork

logger = get_logger(__name__)

EventHandler = Callable[[AuditEntry], None]


class EventSink(ABC):
    @abstractmethod
    def publish(self, event: AuditEntry) -> None:
        """Accept an event without blocking on its delivery."""


class NullEventSink(EventSink):
    def publish(self, event: AuditEntry) -> None:
        pass


class RecordingEventSink(EventSink):
    """Keeps published events in memory, in publish order."""

    def __init__(self) -> None:
        self._events: list[AuditEntry] = []
        self._lock = threading.Lock()

    def publish(self, event: AuditEntry) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._events)

    def of_action(self, action: AuditAction) -> list[AuditEntry]:
        return [event for event in self.events if event.action == action]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class QueuedEventSink(EventSink):
    """Bounded queue drained by a daemon worker thread."""

    _STOP = object()

    def __init__(self, handlers: Iterable[EventHandler], maxsize: int = 10000) -> None:
        self._handlers = list(handlers)
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._worker: threading.Thread | None = None
        self._start_lock = threading.Lock()

    def start(self) -> None:
        with self._start_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run, name="audit-event-sink", daemon=True
            )
            self._worker.start()

    def publish(self, event: AuditEntry) -> None:
        self.start()
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(
                "audit_event_dropped",
                entity_type=event.entity_type.value,
                entity_id=str(event.entity_id),
                action=event.action.value,
                queue_size=self._queue.maxsize,
            )

    def flush(self) -> None:
        """Block until every queued event has been handled."""
        if self._worker is not None:
            self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        worker = self._worker
        if worker is None:
            return
        self._queue.put(self._STOP)
        worker.join(timeout)
        self._worker = None

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is self._STOP:
                    return
                for handler in self._handlers:
                    try:
                        handler(event)
                    except Exception:
                        logger.exception(
                            "audit_handler_failed",
                            handler=getattr(handler, "__name__", type(handler).__name__),
                            entity_id=str(event.entity_id),
                            action=event.action.value,
                        )
            finally:
                self._queue.task_done()


class AuditLogHandler:
    """Event handler that persists events to the audit log."""

    def __init__(self, repository: AuditLogRepository) -> None:
        self._repository = repository

    def __call__(self, event: AuditEntry) -> None:
        self._repository.add(event)


def build_event(
    entity_type: AuditEntityType,
    entity_id: UUID,
    action: AuditAction,
    context: CommandContext,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    change_summary: str = "",
) -> AuditEntry:
    return AuditEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor=context.actor,
        tenant_id=context.tenant_id,
        old_values=old_values,
        new_values=new_values,
        change_summary=change_summary or f"{action.value} {entity_type.value}",
    )


def publish_after_commit(uow: UnitOfWork, sink: EventSink, event: AuditEntry) -> None:
    """Queue ``event`` for the sink once the current transaction commits."""

    def _publish() -> None:
        try:
            sink.publish(event)
        except Exception:
            logger.exception(
                "audit_publish_failed",
                entity_type=event.entity_type.value,
                entity_id=str(event.entity_id),
                action=event.action.value,
            )

    uow.after_commit(_publish)


class AuditService:
    """Read side of the persisted audit trail."""

    def __init__(self, repository: AuditLogRepository) -> None:
        self._repository = repository

    def list_for_entity(
        self, entity_type: AuditEntityType, entity_id: UUID, limit: int = 100
    ) -> list[AuditEntry]:
        return list(self._repository.list_for_entity(entity_type, entity_id, limit))

    def list_recent(self, limit: int = 100) -> list[AuditEntry]:
        return list(self._repository.list_recent(limit))

    def summary(self) -> AuditLogSummary:
        by_action: Counter[AuditAction] = Counter()
        by_entity_type: Counter[AuditEntityType] = Counter()
        oldest = None
        newest = None
        total = 0
        for entry in self._repository.iter_all():
            total += 1
            by_action[entry.action] += 1
            by_entity_type[entry.entity_type] += 1
            if oldest is None or entry.timestamp < oldest:
                oldest = entry.timestamp
            if newest is None or entry.timestamp > newest:
                newest = entry.timestamp
        return AuditLogSummary(
            total_entries=total,
            entries_by_action=dict(by_action),
            entries_by_entity_type=dict(by_entity_type),
            oldest_entry=oldest,
            newest_entry=newest,
        )
