from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from mesplan.models.schedule_slot import ScheduleSlot
from mesplan.repositories.base import BaseRepository


class ScheduleSlotRepository(BaseRepository[ScheduleSlot]):
    def __init__(self, db: Session):
        super().__init__(ScheduleSlot, db)

    def list_filtered(
        self,
        plan_id: Optional[int] = None,
        machine_ids: Optional[Iterable[int]] = None,
        work_order_ids: Optional[Iterable[int]] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ScheduleSlot]:
        q = self.db.query(ScheduleSlot)
        if plan_id is not None:
            q = q.filter(ScheduleSlot.plan_id == plan_id)
        if machine_ids is not None:
            q = q.filter(ScheduleSlot.machine_id.in_(list(machine_ids)))
        if work_order_ids is not None:
            q = q.filter(ScheduleSlot.work_order_id.in_(list(work_order_ids)))
        if status is not None:
            q = q.filter(ScheduleSlot.status == status)
        if start is not None:
            q = q.filter(ScheduleSlot.end_time > start)
        if end is not None:
            q = q.filter(ScheduleSlot.start_time < end)
        return q.order_by(ScheduleSlot.machine_id, ScheduleSlot.start_time, ScheduleSlot.id).all()

    def delete_open_for_operations(self, operation_ids: Iterable[int]) -> int:
        """Remove not-yet-started slots of operations about to be re-planned. Caller commits."""
        ids = list(operation_ids)
        if not ids:
            return 0
        return (
            self.db.query(ScheduleSlot)
            .filter(
                ScheduleSlot.operation_id.in_(ids),
                ScheduleSlot.status.in_(["scheduled", "delayed"]),
            )
            .delete(synchronize_session=False)
        )
