# Repository Layer — Data Access (Repository Pattern, GoF)
from mesplan.repositories.base import BaseRepository
from mesplan.repositories.work_order_repository import WorkOrderRepository
from mesplan.repositories.machine_repository import MachineRepository
from mesplan.repositories.schedule_slot_repository import ScheduleSlotRepository
from mesplan.repositories.production_plan_repository import ProductionPlanRepository
from mesplan.repositories.production_report_repository import ProductionReportRepository
from mesplan.repositories.machine_schedule_state_repository import MachineScheduleStateRepository

__all__ = [
    "BaseRepository",
    "WorkOrderRepository",
    "MachineRepository",
    "ScheduleSlotRepository",
    "ProductionPlanRepository",
    "ProductionReportRepository",
    "MachineScheduleStateRepository",
]
