"""
Event Bus — Observer Pattern (GoF)

Services publish domain events; handlers subscribe by event type.
- LoggingHandler: structured log line per event
- AuditLogHandler: persists an audit_logs row per event
- Conflict notification for downstream UI/reporting is the
  ConflictsDetectedEvent; subscribe a handler to forward it elsewhere.
"""
from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


# ── Events ────────────────────────────────────────────────────────────────────

@dataclass
class DomainEvent:
    occurred_at: datetime = field(default_factory=datetime.utcnow, init=False)

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EntityCreatedEvent(DomainEvent):
    entity_type: str = ""
    entity_id: Optional[int] = None
    user_id: Optional[int] = None


@dataclass
class PlanStatusChangedEvent(DomainEvent):
    entity_type: str = "production_plan"
    entity_id: Optional[int] = None
    user_id: Optional[int] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None


@dataclass
class ScheduleGeneratedEvent(DomainEvent):
    plan_id: Optional[int] = None
    work_order_ids: List[int] = field(default_factory=list)
    slot_ids: List[int] = field(default_factory=list)
    unplaced_operation_ids: List[int] = field(default_factory=list)
    rule: str = ""


@dataclass
class SlotsUpdatedEvent(DomainEvent):
    slot_ids: List[int] = field(default_factory=list)
    machine_ids: List[int] = field(default_factory=list)
    applied: bool = True


@dataclass
class ConflictsDetectedEvent(DomainEvent):
    source: str = ""
    conflicts: List[Dict[str, Any]] = field(default_factory=list)


# ── Bus ───────────────────────────────────────────────────────────────────────

Handler = Callable[[DomainEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[Type[DomainEvent], List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def publish(self, event: DomainEvent) -> None:
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in handlers:
                try:
                    handler(event)
                except Exception:  # noqa: BLE001
                    # Handler failures are logged only; publishers never see them.
                    logger.exception("event_handler_failed event=%s handler=%r", event.name, handler)


# ── Handlers ──────────────────────────────────────────────────────────────────

class LoggingHandler:
    def __call__(self, event: DomainEvent) -> None:
        logger.info("domain_event name=%s", event.name, extra={"event": event.to_dict()})


class AuditLogHandler:
    """Writes one audit_logs row per event using its own short-lived session."""

    def __init__(self, db_session_factory):
        self._session_factory = db_session_factory

    def __call__(self, event: DomainEvent) -> None:
        from mesplan.models.audit_log import AuditLog

        payload = event.to_dict()
        entity_type = payload.get("entity_type") or ("production_plan" if payload.get("plan_id") else "schedule")
        entity_id = payload.get("entity_id") or payload.get("plan_id")

        db = self._session_factory()
        try:
            db.add(
                AuditLog(
                    event_name=event.name,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    user_id=payload.get("user_id"),
                    payload=json.dumps(payload, default=str),
                )
            )
            db.commit()
        finally:
            db.close()


_event_bus = EventBus()


def get_event_bus() -> EventBus:
    return _event_bus


def configure_event_bus(db_session_factory=None) -> EventBus:
    bus = get_event_bus()
    bus.clear()
    bus.subscribe(DomainEvent, LoggingHandler())
    if db_session_factory is not None:
        bus.subscribe(DomainEvent, AuditLogHandler(db_session_factory))
    return bus
