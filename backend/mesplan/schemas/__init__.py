from mesplan.schemas.scheduling import (
    SchedulingPolicySchema,
    PlanScheduleRequest,
    PlanScheduleResponse,
    ScheduleSlotResponse,
    SchedulingConflictResponse,
    SlotCandidate,
    ValidateSlotsRequest,
    ValidateSlotsResponse,
    SlotChange,
    BulkUpdateSlotsRequest,
    BulkUpdateSlotsResponse,
    SlotStatusUpdateRequest,
    CapacityBucketResponse,
)
from mesplan.schemas.production_plan import (
    ProductionPlanCreate,
    ProductionPlanStatusUpdate,
    ProductionPlanResponse,
    MachineOEEResponse,
    PlanMetricsResponse,
)
