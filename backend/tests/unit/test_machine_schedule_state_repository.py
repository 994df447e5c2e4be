from datetime import datetime, timedelta

from mesplan.models.machine_schedule_state import MachineScheduleState
from mesplan.repositories.machine_schedule_state_repository import MachineScheduleStateRepository


def test_ensure_creates_state_rows_once(db, make_machine):
    m1 = make_machine("M-1")
    m2 = make_machine("M-2")
    repo = MachineScheduleStateRepository(db)

    repo.ensure([m1.id, m2.id])
    repo.ensure([m1.id])

    assert db.query(MachineScheduleState).count() == 2
    assert repo.versions([m1.id, m2.id]) == {m1.id: 0, m2.id: 0}


def test_lease_is_exclusive_until_released(db, make_machine):
    machine = make_machine("M-1")
    repo = MachineScheduleStateRepository(db)

    assert repo.acquire_leases([machine.id], "token-a", 30) == []
    assert repo.acquire_leases([machine.id], "token-b", 30) == [machine.id]
    # Re-entrant for the holder.
    assert repo.acquire_leases([machine.id], "token-a", 30) == []

    repo.release_leases([machine.id], "token-a")
    assert repo.acquire_leases([machine.id], "token-b", 30) == []


def test_expired_lease_can_be_taken_over(db, make_machine):
    machine = make_machine("M-1")
    repo = MachineScheduleStateRepository(db)
    repo.acquire_leases([machine.id], "token-a", 30)

    later = datetime.utcnow() + timedelta(minutes=5)
    assert repo.acquire_leases([machine.id], "token-b", 30, now=later) == []


def test_lease_is_all_or_nothing(db, make_machine):
    m1 = make_machine("M-1")
    m2 = make_machine("M-2")
    repo = MachineScheduleStateRepository(db)
    repo.acquire_leases([m2.id], "token-a", 30)

    assert repo.acquire_leases([m1.id, m2.id], "token-b", 30) == [m2.id]

    db.expire_all()
    state = db.get(MachineScheduleState, m1.id)
    assert state.lease_token is None


def test_version_bump_is_compare_and_set(db, make_machine):
    machine = make_machine("M-1")
    repo = MachineScheduleStateRepository(db)
    repo.ensure([machine.id])

    expected = repo.versions([machine.id])
    assert repo.bump_versions(expected) == []
    db.commit()

    assert repo.versions([machine.id]) == {machine.id: 1}
    assert repo.bump_versions(expected) == [machine.id]
    db.rollback()
