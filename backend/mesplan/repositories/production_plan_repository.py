from typing import List, Optional

from sqlalchemy.orm import Session

from mesplan.models.production_plan import ProductionPlan
from mesplan.repositories.base import BaseRepository


class ProductionPlanRepository(BaseRepository[ProductionPlan]):
    def __init__(self, db: Session):
        super().__init__(ProductionPlan, db)

    def list_filtered(
        self,
        status: Optional[str] = None,
        plan_type: Optional[str] = None,
    ) -> List[ProductionPlan]:
        q = self.db.query(ProductionPlan)
        if status is not None:
            q = q.filter(ProductionPlan.status == status)
        if plan_type is not None:
            q = q.filter(ProductionPlan.plan_type == plan_type)
        return q.order_by(ProductionPlan.start_date.desc(), ProductionPlan.id.desc()).all()
