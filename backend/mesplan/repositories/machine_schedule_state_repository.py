"""
Machine Schedule State Repository

Per-machine optimistic version stamps and short mutation leases. Lease
acquisition commits immediately so competing requests see it; version bumps
join the caller's transaction so they commit or roll back with the slot
changes they guard.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from mesplan.models.machine_schedule_state import MachineScheduleState
from mesplan.repositories.base import BaseRepository


class MachineScheduleStateRepository(BaseRepository[MachineScheduleState]):
    def __init__(self, db: Session):
        super().__init__(MachineScheduleState, db)

    def ensure(self, machine_ids: Iterable[int]) -> None:
        ids = sorted(set(machine_ids))
        if not ids:
            return
        existing = {
            row.machine_id
            for row in self.db.query(MachineScheduleState.machine_id)
            .filter(MachineScheduleState.machine_id.in_(ids))
            .all()
        }
        missing = [mid for mid in ids if mid not in existing]
        for mid in missing:
            self.db.add(MachineScheduleState(machine_id=mid, version=0))
        if missing:
            self.db.commit()

    def versions(self, machine_ids: Iterable[int]) -> Dict[int, int]:
        ids = sorted(set(machine_ids))
        if not ids:
            return {}
        rows = (
            self.db.query(MachineScheduleState.machine_id, MachineScheduleState.version)
            .filter(MachineScheduleState.machine_id.in_(ids))
            .all()
        )
        found = {row.machine_id: row.version for row in rows}
        return {mid: found.get(mid, 0) for mid in ids}

    def acquire_leases(
        self,
        machine_ids: Iterable[int],
        token: str,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> List[int]:
        """Lease every machine or none; returns the ids that were already leased."""
        ids = sorted(set(machine_ids))
        self.ensure(ids)
        now = now or datetime.utcnow()
        expires = now + timedelta(seconds=lease_seconds)

        acquired: List[int] = []
        busy: List[int] = []
        for mid in ids:
            count = (
                self.db.query(MachineScheduleState)
                .filter(
                    MachineScheduleState.machine_id == mid,
                    or_(
                        MachineScheduleState.lease_token.is_(None),
                        MachineScheduleState.lease_token == token,
                        MachineScheduleState.lease_expires_at < now,
                    ),
                )
                .update(
                    {
                        MachineScheduleState.lease_token: token,
                        MachineScheduleState.lease_expires_at: expires,
                    },
                    synchronize_session=False,
                )
            )
            if count:
                acquired.append(mid)
            else:
                busy.append(mid)

        if busy:
            self.db.rollback()
        else:
            self.db.commit()
        return busy

    def release_leases(self, machine_ids: Iterable[int], token: str) -> None:
        ids = sorted(set(machine_ids))
        if not ids:
            return
        (
            self.db.query(MachineScheduleState)
            .filter(
                MachineScheduleState.machine_id.in_(ids),
                MachineScheduleState.lease_token == token,
            )
            .update(
                {MachineScheduleState.lease_token: None, MachineScheduleState.lease_expires_at: None},
                synchronize_session=False,
            )
        )
        self.db.commit()

    def bump_versions(self, expected: Dict[int, int]) -> List[int]:
        """Compare-and-set each machine's version; returns ids whose version moved. Caller commits."""
        stale: List[int] = []
        for mid in sorted(expected):
            count = (
                self.db.query(MachineScheduleState)
                .filter(
                    MachineScheduleState.machine_id == mid,
                    MachineScheduleState.version == expected[mid],
                )
                .update(
                    {MachineScheduleState.version: MachineScheduleState.version + 1},
                    synchronize_session=False,
                )
            )
            if not count:
                stale.append(mid)
        return stale
