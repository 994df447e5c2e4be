from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from mesplan.models.machine import Machine, MachineCapability, MachineDowntime, SetupMatrixEntry
from mesplan.repositories.base import BaseRepository


class MachineRepository(BaseRepository[Machine]):
    def __init__(self, db: Session):
        super().__init__(Machine, db)

    def list_filtered(
        self,
        machine_ids: Optional[Iterable[int]] = None,
        status: Optional[str] = None,
    ) -> List[Machine]:
        q = self.db.query(Machine)
        if machine_ids is not None:
            q = q.filter(Machine.id.in_(list(machine_ids)))
        if status is not None:
            q = q.filter(Machine.status == status)
        return q.order_by(Machine.id).all()

    def list_capabilities(
        self,
        machine_ids: Optional[Iterable[int]] = None,
        operation_types: Optional[Iterable[str]] = None,
        active_only: bool = False,
    ) -> List[MachineCapability]:
        q = self.db.query(MachineCapability)
        if machine_ids is not None:
            q = q.filter(MachineCapability.machine_id.in_(list(machine_ids)))
        if operation_types is not None:
            q = q.filter(MachineCapability.operation_type.in_(list(operation_types)))
        if active_only:
            q = q.filter(MachineCapability.is_active.is_(True))
        return q.order_by(MachineCapability.machine_id, MachineCapability.operation_type).all()

    def list_downtime(
        self,
        start: datetime,
        end: datetime,
        machine_ids: Optional[Iterable[int]] = None,
    ) -> List[MachineDowntime]:
        q = self.db.query(MachineDowntime).filter(
            MachineDowntime.start_time < end,
            MachineDowntime.end_time > start,
        )
        if machine_ids is not None:
            q = q.filter(MachineDowntime.machine_id.in_(list(machine_ids)))
        return q.order_by(MachineDowntime.machine_id, MachineDowntime.start_time).all()

    def list_setup_matrix(self, machine_types: Optional[Iterable[str]] = None) -> List[SetupMatrixEntry]:
        q = self.db.query(SetupMatrixEntry)
        if machine_types is not None:
            q = q.filter(SetupMatrixEntry.machine_type.in_(list(machine_types)))
        return q.order_by(
            SetupMatrixEntry.machine_type, SetupMatrixEntry.from_family, SetupMatrixEntry.to_family
        ).all()
