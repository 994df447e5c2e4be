"""
Shared fixtures: an in-memory SQLite database per test, a TestClient wired
to it, and small factories for the registry rows the scheduler reads.
"""
import json
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import mesplan.models  # noqa: F401  (register mappers)
from mesplan.database import Base, get_db
from mesplan.main import app
from mesplan.models.machine import Machine, MachineCapability, MachineDowntime
from mesplan.models.work_order import Operation, WorkOrder
from mesplan.utils.events import configure_event_bus

# Monday, far enough ahead that planned slots are never in the past.
DAY1 = datetime(2030, 1, 7)

# One 8-hour window every day: 480 available minutes per daily bucket.
DAY_CALENDAR = {"shifts": [{"name": "Day", "start": "00:00", "end": "08:00"}], "work_days": [0, 1, 2, 3, 4, 5, 6]}


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def event_bus():
    bus = configure_event_bus(db_session_factory=None)
    yield bus
    bus.clear()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


# ── Factories ─────────────────────────────────────────────────────────────────

@pytest.fixture
def make_machine(db):
    def _make(name, operation_types=("MILLING",), calendar=DAY_CALENDAR, status="idle", cost_per_hour=50.0,
              machine_type="CNC", **kwargs):
        machine = Machine(
            name=name,
            machine_type=machine_type,
            status=status,
            calendar_json=json.dumps(calendar) if calendar is not None else None,
            **kwargs,
        )
        db.add(machine)
        db.flush()
        for op_type in operation_types:
            db.add(
                MachineCapability(
                    machine_id=machine.id,
                    operation_type=op_type,
                    skill_level=3,
                    throughput_rating=90.0,
                    quality_rating=95.0,
                    cost_per_hour=cost_per_hour,
                    is_active=True,
                )
            )
        db.commit()
        db.refresh(machine)
        return machine

    return _make


@pytest.fixture
def make_work_order(db):
    counter = {"n": 0}

    def _make(operations, due_date=None, priority="medium", part_number="PN-100", quantity=10):
        """``operations`` lists (operation_type, minutes[, family[, setup_minutes]]) in sequence order."""
        counter["n"] += 1
        wo = WorkOrder(
            order_number=f"WO-{counter['n']:04d}",
            part_number=part_number,
            quantity=quantity,
            due_date=due_date or DAY1 + timedelta(days=5),
            priority=priority,
            status="pending",
        )
        db.add(wo)
        db.flush()
        for seq, (op_type, minutes, *extra) in enumerate(operations, start=1):
            db.add(
                Operation(
                    work_order_id=wo.id,
                    operation_type=op_type,
                    estimated_duration_minutes=minutes,
                    sequence=seq,
                    operation_family=extra[0] if extra else None,
                    setup_minutes=extra[1] if len(extra) > 1 else 0.0,
                )
            )
        db.commit()
        db.refresh(wo)
        return wo

    return _make


@pytest.fixture
def make_downtime(db):
    def _make(machine_id, start, end, reason="planned maintenance"):
        row = MachineDowntime(machine_id=machine_id, start_time=start, end_time=end, reason=reason)
        db.add(row)
        db.commit()
        return row

    return _make


def operations_of(db, work_order_id):
    return (
        db.query(Operation)
        .filter(Operation.work_order_id == work_order_id)
        .order_by(Operation.sequence)
        .all()
    )
