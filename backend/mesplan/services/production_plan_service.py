"""
Production Plan Service

Plan CRUD and status transitions, plan-scoped scheduling and the plan
metrics roll-up (progress, efficiency, OEE).
"""
import json
import logging
from datetime import datetime, time, timedelta
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from mesplan.core.exceptions import BusinessRuleViolationException, EntityNotFoundException
from mesplan.models.production_plan import ProductionPlan
from mesplan.repositories.production_plan_repository import ProductionPlanRepository
from mesplan.scheduling import aggregate_plan, build_buckets
from mesplan.scheduling.metrics import PlanMetrics
from mesplan.scheduling.types import Granularity
from mesplan.schemas.production_plan import (
    MachineOEEResponse,
    PlanMetricsResponse,
    ProductionPlanCreate,
    ProductionPlanResponse,
    ProductionPlanStatusUpdate,
)
from mesplan.schemas.scheduling import PlanScheduleResponse, SchedulingPolicySchema
from mesplan.services.schedule_loader import ScheduleDataLoader, default_calendar
from mesplan.services.scheduling_service import (
    SchedulingService,
    policy_from_schema,
    policy_to_dict,
    resolve_granularity,
)
from mesplan.utils.events import EntityCreatedEvent, PlanStatusChangedEvent, get_event_bus

logger = logging.getLogger(__name__)

PLAN_SPANS = {
    "daily": relativedelta(days=1),
    "weekly": relativedelta(weeks=1),
    "monthly": relativedelta(months=1),
}

# Allowed status transitions; archived is terminal.
PLAN_TRANSITIONS = {
    "draft": {"active", "archived"},
    "active": {"paused", "completed", "archived"},
    "paused": {"active", "completed", "archived"},
    "completed": {"archived"},
    "archived": set(),
}

SCHEDULABLE_STATUSES = {"draft", "active", "paused"}


def plan_window(plan: ProductionPlan):
    """[start of start_date, end of end_date) as datetimes."""
    return (
        datetime.combine(plan.start_date, time.min),
        datetime.combine(plan.end_date + timedelta(days=1), time.min),
    )


class ProductionPlanService:
    def __init__(self, db: Session):
        self._db = db
        self._repo = ProductionPlanRepository(db)
        self._loader = ScheduleDataLoader(db)
        self._bus = get_event_bus()

    def _get_or_404(self, plan_id: int) -> ProductionPlan:
        plan = self._repo.get_by_id(plan_id)
        if not plan:
            raise EntityNotFoundException("ProductionPlan", plan_id)
        return plan

    def list_plans(self, status: Optional[str] = None, plan_type: Optional[str] = None) -> List[ProductionPlanResponse]:
        return [self._to_response(p) for p in self._repo.list_filtered(status=status, plan_type=plan_type)]

    def get_plan(self, plan_id: int) -> ProductionPlanResponse:
        return self._to_response(self._get_or_404(plan_id))

    def create_plan(self, body: ProductionPlanCreate) -> ProductionPlanResponse:
        end_date = body.end_date or (body.start_date + PLAN_SPANS[body.plan_type] - timedelta(days=1))
        if end_date < body.start_date:
            raise BusinessRuleViolationException("Plan end_date cannot be before start_date.")

        work_order_ids = sorted(set(body.work_order_ids))
        self._loader.work_orders(work_order_ids)
        policy = policy_from_schema(body.policy) if body.policy is not None else None

        plan = self._repo.create(
            ProductionPlan(
                name=body.name,
                plan_type=body.plan_type,
                start_date=body.start_date,
                end_date=end_date,
                status="draft",
                work_order_ids_json=json.dumps(work_order_ids),
                policy_json=json.dumps(policy_to_dict(policy)) if policy else None,
                notes=body.notes,
            )
        )
        logger.info("production_plan_created plan_id=%s work_orders=%s", plan.id, len(work_order_ids))
        self._bus.publish(EntityCreatedEvent(entity_type="production_plan", entity_id=plan.id))
        return self._to_response(plan)

    def update_status(self, plan_id: int, body: ProductionPlanStatusUpdate) -> ProductionPlanResponse:
        plan = self._get_or_404(plan_id)
        old_status = plan.status
        if body.status == old_status:
            return self._to_response(plan)
        if body.status not in PLAN_TRANSITIONS.get(old_status, set()):
            raise BusinessRuleViolationException(
                f"Cannot move production plan from '{old_status}' to '{body.status}'."
            )
        plan = self._repo.update(plan, {"status": body.status})
        self._bus.publish(
            PlanStatusChangedEvent(entity_id=plan.id, old_status=old_status, new_status=body.status)
        )
        return self._to_response(plan)

    def schedule_plan(self, plan_id: int, granularity: Optional[str] = None) -> PlanScheduleResponse:
        plan = self._get_or_404(plan_id)
        if plan.status not in SCHEDULABLE_STATUSES:
            raise BusinessRuleViolationException(f"Production plan in status '{plan.status}' cannot be scheduled.")
        if not plan.work_order_ids:
            raise BusinessRuleViolationException("Production plan has no work orders to schedule.")

        stored = plan.policy
        policy = policy_from_schema(SchedulingPolicySchema(**stored) if stored else None)
        start, end = plan_window(plan)
        return SchedulingService(self._db).plan_work_orders(
            work_order_ids=plan.work_order_ids,
            policy=policy,
            start=start,
            end=end,
            granularity=resolve_granularity(granularity),
            plan_id=plan.id,
        )

    # ── Metrics ───────────────────────────────────────────────────────────────

    def compute_metrics(self, plan: ProductionPlan) -> PlanMetrics:
        start, end = plan_window(plan)
        wo_ids = plan.work_order_ids
        operations = self._loader.operations(wo_ids)
        slots = self._loader.slots(work_order_ids=wo_ids) if wo_ids else []
        machine_ids = sorted({s.machine_id for s in slots})
        machines = self._loader.machines(machine_ids) if machine_ids else []

        buckets = []
        if machines:
            all_slots = self._loader.slots(machine_ids=machine_ids, start=start, end=end)
            downtime = self._loader.downtime(start, end, machine_ids=machine_ids)
            for machine in machines:
                buckets.extend(
                    build_buckets(
                        machine,
                        machine.calendar or default_calendar(),
                        start,
                        end,
                        Granularity.DAILY,
                        slots=all_slots,
                        downtime=downtime,
                    )
                )
        reports = self._loader.reports(start, end, machine_ids=machine_ids) if machine_ids else []
        return aggregate_plan(wo_ids, operations, slots, buckets, reports)

    def get_metrics(self, plan_id: int) -> PlanMetricsResponse:
        plan = self._get_or_404(plan_id)
        metrics = self.compute_metrics(plan)
        return PlanMetricsResponse(
            plan_id=plan.id,
            total_work_orders=metrics.total_work_orders,
            completed_work_orders=metrics.completed_work_orders,
            total_operations=metrics.total_operations,
            scheduled_operations=metrics.scheduled_operations,
            progress_pct=metrics.progress_pct,
            estimated_hours=metrics.estimated_hours,
            available_hours=metrics.available_hours,
            efficiency=metrics.efficiency,
            overloaded_buckets=metrics.overloaded_buckets,
            utilization=round(metrics.utilization, 4),
            availability=round(metrics.availability, 4),
            performance=round(metrics.performance, 4),
            quality=round(metrics.quality, 4),
            oee=round(metrics.oee, 4),
            machines=[
                MachineOEEResponse(
                    machine_id=m.machine_id,
                    available_minutes=m.available_minutes,
                    planned_minutes=m.planned_minutes,
                    running_minutes=m.running_minutes,
                    units_produced=m.units_produced,
                    good_units=m.good_units,
                    utilization=round(m.utilization, 4),
                    availability=round(m.availability, 4),
                    performance=round(m.performance, 4),
                    quality=round(m.quality, 4),
                    oee=round(m.oee, 4),
                )
                for m in metrics.machines
            ],
        )

    def _to_response(self, plan: ProductionPlan) -> ProductionPlanResponse:
        metrics = self.compute_metrics(plan)
        stored = plan.policy
        next_reschedule_at = None
        if stored and stored.get("reschedule_interval_minutes") and plan.last_scheduled_at:
            next_reschedule_at = plan.last_scheduled_at + timedelta(minutes=stored["reschedule_interval_minutes"])
        return ProductionPlanResponse(
            id=plan.id,
            name=plan.name,
            plan_type=plan.plan_type,
            start_date=plan.start_date,
            end_date=plan.end_date,
            status=plan.status,
            work_order_ids=plan.work_order_ids,
            policy=SchedulingPolicySchema(**stored) if stored else None,
            last_scheduled_at=plan.last_scheduled_at,
            next_reschedule_at=next_reschedule_at,
            total_work_orders=metrics.total_work_orders,
            completed_work_orders=metrics.completed_work_orders,
            efficiency=metrics.efficiency,
            notes=plan.notes,
            created_at=plan.created_at,
            updated_at=plan.updated_at,
        )
