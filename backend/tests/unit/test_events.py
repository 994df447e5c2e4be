import json

from mesplan.models.audit_log import AuditLog
from mesplan.utils.events import (
    ConflictsDetectedEvent,
    EntityCreatedEvent,
    EventBus,
    ScheduleGeneratedEvent,
    configure_event_bus,
)


def test_audit_handler_writes_one_row_per_event(db, session_factory):
    bus = configure_event_bus(db_session_factory=session_factory)

    bus.publish(EntityCreatedEvent(entity_type="production_plan", entity_id=7))
    bus.publish(ScheduleGeneratedEvent(plan_id=7, slot_ids=[1, 2], rule="EDD"))

    rows = db.query(AuditLog).order_by(AuditLog.id).all()
    assert [r.event_name for r in rows] == ["EntityCreatedEvent", "ScheduleGeneratedEvent"]
    assert rows[0].entity_type == "production_plan"
    assert rows[0].entity_id == 7
    assert json.loads(rows[1].payload)["slot_ids"] == [1, 2]


def test_handler_failure_does_not_reach_publisher(caplog):
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(ConflictsDetectedEvent, broken)
    bus.subscribe(ConflictsDetectedEvent, received.append)

    bus.publish(ConflictsDetectedEvent(source="validate", conflicts=[{"kind": "overload"}]))

    assert len(received) == 1
    assert "event_handler_failed" in caplog.text


def test_handlers_only_see_their_event_type():
    bus = EventBus()
    created = []
    bus.subscribe(EntityCreatedEvent, created.append)

    bus.publish(ScheduleGeneratedEvent(plan_id=1))
    bus.publish(EntityCreatedEvent(entity_type="production_plan", entity_id=1))

    assert [e.entity_id for e in created] == [1]
