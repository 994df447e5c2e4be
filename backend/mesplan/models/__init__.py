from mesplan.models.work_order import WorkOrder, Operation
from mesplan.models.machine import Machine, MachineCapability, MachineDowntime, SetupMatrixEntry
from mesplan.models.production_plan import ProductionPlan
from mesplan.models.schedule_slot import ScheduleSlot
from mesplan.models.production_report import ProductionReport
from mesplan.models.machine_schedule_state import MachineScheduleState
from mesplan.models.audit_log import AuditLog

__all__ = [
    "WorkOrder",
    "Operation",
    "Machine",
    "MachineCapability",
    "MachineDowntime",
    "SetupMatrixEntry",
    "ProductionPlan",
    "ScheduleSlot",
    "ProductionReport",
    "MachineScheduleState",
    "AuditLog",
]
