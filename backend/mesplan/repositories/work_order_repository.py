from typing import Iterable, List

from sqlalchemy.orm import Session

from mesplan.models.work_order import Operation, WorkOrder
from mesplan.repositories.base import BaseRepository


class WorkOrderRepository(BaseRepository[WorkOrder]):
    def __init__(self, db: Session):
        super().__init__(WorkOrder, db)

    def list_operations(self, work_order_ids: Iterable[int]) -> List[Operation]:
        ids = list(work_order_ids)
        if not ids:
            return []
        return (
            self.db.query(Operation)
            .filter(Operation.work_order_id.in_(ids))
            .order_by(Operation.work_order_id, Operation.sequence, Operation.id)
            .all()
        )

    def get_operations(self, operation_ids: Iterable[int]) -> List[Operation]:
        ids = list(operation_ids)
        if not ids:
            return []
        return self.db.query(Operation).filter(Operation.id.in_(ids)).all()
