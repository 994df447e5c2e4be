"""
Scheduling Router — Thin Controller (SRP / DIP)
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from mesplan.database import get_db
from mesplan.schemas.scheduling import (
    BulkUpdateSlotsRequest,
    BulkUpdateSlotsResponse,
    CapacityBucketResponse,
    PlanScheduleRequest,
    PlanScheduleResponse,
    ScheduleSlotResponse,
    SlotStatusUpdateRequest,
    ValidateSlotsRequest,
    ValidateSlotsResponse,
    to_naive_utc,
)
from mesplan.services.scheduling_service import SchedulingService


router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


def get_scheduling_service(db: Session = Depends(get_db)) -> SchedulingService:
    return SchedulingService(db)


@router.post("/plan", response_model=PlanScheduleResponse, status_code=201)
def plan_schedule(
    body: PlanScheduleRequest,
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.plan_schedule(body)


@router.post("/validate", response_model=ValidateSlotsResponse)
def validate_slots(
    body: ValidateSlotsRequest,
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.validate_slots(body)


@router.post("/slots/bulk-update", response_model=BulkUpdateSlotsResponse)
def bulk_update_slots(
    body: BulkUpdateSlotsRequest,
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.bulk_update_slots(body)


@router.get("/capacity-buckets", response_model=List[CapacityBucketResponse])
def capacity_buckets(
    start: datetime,
    end: datetime,
    granularity: Optional[str] = Query(default=None, pattern="^(shift|daily|weekly)$"),
    machine_id: Optional[List[int]] = Query(default=None),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.get_capacity_buckets(
        start=to_naive_utc(start),
        end=to_naive_utc(end),
        granularity=granularity,
        machine_ids=machine_id,
    )


@router.get("/slots", response_model=List[ScheduleSlotResponse])
def list_slots(
    plan_id: Optional[int] = None,
    machine_id: Optional[int] = None,
    work_order_id: Optional[int] = None,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.list_slots(
        plan_id=plan_id,
        machine_id=machine_id,
        work_order_id=work_order_id,
        status=status,
        start=to_naive_utc(start),
        end=to_naive_utc(end),
    )


@router.patch("/slots/{slot_id}/status", response_model=ScheduleSlotResponse)
def update_slot_status(
    slot_id: int,
    body: SlotStatusUpdateRequest,
    service: SchedulingService = Depends(get_scheduling_service),
):
    return service.update_slot_status(slot_id=slot_id, body=body)
