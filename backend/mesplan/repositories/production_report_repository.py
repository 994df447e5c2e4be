from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from mesplan.models.production_report import ProductionReport
from mesplan.repositories.base import BaseRepository


class ProductionReportRepository(BaseRepository[ProductionReport]):
    def __init__(self, db: Session):
        super().__init__(ProductionReport, db)

    def list_in_range(
        self,
        start: datetime,
        end: datetime,
        machine_ids: Optional[Iterable[int]] = None,
    ) -> List[ProductionReport]:
        q = self.db.query(ProductionReport).filter(
            ProductionReport.start_time < end,
            ProductionReport.end_time > start,
        )
        if machine_ids is not None:
            q = q.filter(ProductionReport.machine_id.in_(list(machine_ids)))
        return q.order_by(ProductionReport.machine_id, ProductionReport.start_time).all()
