"""
Production Plan Router — Thin Controller (SRP / DIP)
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from mesplan.database import get_db
from mesplan.schemas.production_plan import (
    PlanMetricsResponse,
    ProductionPlanCreate,
    ProductionPlanResponse,
    ProductionPlanStatusUpdate,
)
from mesplan.schemas.scheduling import PlanScheduleResponse
from mesplan.services.production_plan_service import ProductionPlanService


router = APIRouter(prefix="/production-plans", tags=["Production Plans"])


def get_plan_service(db: Session = Depends(get_db)) -> ProductionPlanService:
    return ProductionPlanService(db)


@router.get("", response_model=List[ProductionPlanResponse])
def list_plans(
    status: Optional[str] = None,
    plan_type: Optional[str] = None,
    service: ProductionPlanService = Depends(get_plan_service),
):
    return service.list_plans(status=status, plan_type=plan_type)


@router.post("", response_model=ProductionPlanResponse, status_code=201)
def create_plan(
    body: ProductionPlanCreate,
    service: ProductionPlanService = Depends(get_plan_service),
):
    return service.create_plan(body)


@router.get("/{plan_id}", response_model=ProductionPlanResponse)
def get_plan(
    plan_id: int,
    service: ProductionPlanService = Depends(get_plan_service),
):
    return service.get_plan(plan_id)


@router.patch("/{plan_id}/status", response_model=ProductionPlanResponse)
def update_plan_status(
    plan_id: int,
    body: ProductionPlanStatusUpdate,
    service: ProductionPlanService = Depends(get_plan_service),
):
    return service.update_status(plan_id=plan_id, body=body)


@router.post("/{plan_id}/schedule", response_model=PlanScheduleResponse, status_code=201)
def schedule_plan(
    plan_id: int,
    granularity: Optional[str] = Query(default=None, pattern="^(shift|daily|weekly)$"),
    service: ProductionPlanService = Depends(get_plan_service),
):
    return service.schedule_plan(plan_id=plan_id, granularity=granularity)


@router.get("/{plan_id}/metrics", response_model=PlanMetricsResponse)
def plan_metrics(
    plan_id: int,
    service: ProductionPlanService = Depends(get_plan_service),
):
    return service.get_metrics(plan_id)
