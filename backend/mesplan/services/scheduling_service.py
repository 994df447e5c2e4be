"""
Scheduling Service

Request/response operations over the scheduling engine: plan, validate,
bulk-update and capacity buckets. Every mutation leases the machines it
touches and commits its slot changes together with a compare-and-set bump of
each machine's version.
"""
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from mesplan.config import settings
from mesplan.core.exceptions import (
    BusinessRuleViolationException,
    ConcurrentModificationError,
    EntityNotFoundException,
    InvalidPolicyError,
    MachineBusyError,
    MalformedSlotError,
)
from mesplan.models.schedule_slot import ScheduleSlot
from mesplan.repositories.machine_schedule_state_repository import MachineScheduleStateRepository
from mesplan.repositories.production_plan_repository import ProductionPlanRepository
from mesplan.repositories.schedule_slot_repository import ScheduleSlotRepository
from mesplan.repositories.work_order_repository import WorkOrderRepository
from mesplan.scheduling import (
    Allocator,
    ConflictDetector,
    build_buckets,
    build_policy,
    derive_work_order_status,
    order_operations,
)
from mesplan.scheduling.types import (
    CapacityBucket,
    Granularity,
    MachineInfo,
    OperationInfo,
    SchedulingConflict,
    SchedulingPolicy,
    Severity,
    Slot,
    SlotStatus,
)
from mesplan.schemas.scheduling import (
    BulkUpdateSlotsRequest,
    BulkUpdateSlotsResponse,
    CapacityBucketResponse,
    PlanScheduleRequest,
    PlanScheduleResponse,
    ScheduleSlotResponse,
    SchedulingConflictResponse,
    SchedulingPolicySchema,
    SlotChange,
    SlotStatusUpdateRequest,
    ValidateSlotsRequest,
    ValidateSlotsResponse,
)
from mesplan.services.schedule_loader import ScheduleDataLoader, conflict_to_dict, default_calendar
from mesplan.utils.events import (
    ConflictsDetectedEvent,
    ScheduleGeneratedEvent,
    SlotsUpdatedEvent,
    get_event_bus,
)

logger = logging.getLogger(__name__)

# Slots and downtime are read this far around a window so whole weekly buckets are rebuilt.
BUCKET_MARGIN = timedelta(days=7)


def policy_from_schema(schema: Optional[SchedulingPolicySchema]) -> SchedulingPolicy:
    if schema is None:
        return SchedulingPolicy(horizon_hours=settings.DEFAULT_HORIZON_HOURS)
    return build_policy(
        schema.rule,
        horizon_hours=schema.horizon_hours,
        allow_overload=schema.allow_overload,
        max_overload_percentage=schema.max_overload_percentage,
        reschedule_interval_minutes=schema.reschedule_interval_minutes,
        default_horizon_hours=settings.DEFAULT_HORIZON_HOURS,
    )


def policy_to_dict(policy: SchedulingPolicy) -> Dict:
    return {
        "rule": policy.rule.value,
        "horizon_hours": policy.horizon_hours,
        "allow_overload": policy.allow_overload,
        "max_overload_percentage": policy.max_overload_percentage,
        "reschedule_interval_minutes": policy.reschedule_interval_minutes,
    }


def resolve_granularity(value: Optional[str]) -> Granularity:
    return Granularity(value or settings.DEFAULT_GRANULARITY)


def _conflict_responses(conflicts: Iterable[SchedulingConflict]) -> List[SchedulingConflictResponse]:
    return [SchedulingConflictResponse(**conflict_to_dict(c)) for c in conflicts]


def _bucket_response(bucket: CapacityBucket) -> CapacityBucketResponse:
    return CapacityBucketResponse(
        machine_id=bucket.machine_id,
        date=bucket.date,
        shift=bucket.shift,
        window_start=bucket.window_start,
        window_end=bucket.window_end,
        available_minutes=bucket.available_minutes,
        planned_minutes=bucket.planned_minutes,
        utilization=round(bucket.utilization, 4),
        is_overloaded=bucket.is_overloaded,
    )


def _slot_responses(rows: Iterable[ScheduleSlot]) -> List[ScheduleSlotResponse]:
    return [ScheduleSlotResponse.model_validate(row) for row in rows]


class SchedulingService:
    def __init__(self, db: Session):
        self._db = db
        self._loader = ScheduleDataLoader(db)
        self._slot_repo = ScheduleSlotRepository(db)
        self._work_order_repo = WorkOrderRepository(db)
        self._plan_repo = ProductionPlanRepository(db)
        self._state_repo = MachineScheduleStateRepository(db)
        self._bus = get_event_bus()

    # ── Concurrency helpers ───────────────────────────────────────────────────

    @contextmanager
    def _machine_leases(self, machine_ids: Sequence[int]):
        token = uuid4().hex
        busy = self._state_repo.acquire_leases(machine_ids, token, settings.SCHEDULE_LEASE_SECONDS)
        if busy:
            logger.warning("schedule_lease_rejected machine_ids=%s", busy)
            raise MachineBusyError(busy)
        try:
            yield token
        except Exception:
            self._db.rollback()
            raise
        finally:
            self._state_repo.release_leases(machine_ids, token)

    def _detect(
        self,
        slots: Sequence[Slot],
        policy: SchedulingPolicy,
        granularity: Granularity,
        operations: Dict[int, OperationInfo],
        machines: Optional[Sequence[MachineInfo]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[SchedulingConflict]:
        if not slots:
            return []
        machine_ids = sorted({s.machine_id for s in slots})
        if machines is None:
            machines = self._loader.machines(machine_ids)
        lo = min(s.setup_start for s in slots) - BUCKET_MARGIN
        hi = max(s.end for s in slots) + BUCKET_MARGIN
        detector = ConflictDetector(
            operations=list(operations.values()),
            capabilities=self._loader.capabilities(machine_ids=machine_ids),
            machines=machines,
            policy=policy,
            downtime=self._loader.downtime(lo, hi, machine_ids=machine_ids),
            granularity=granularity,
            default_calendar=default_calendar(),
            shift_start_hour=settings.SHIFT_BUCKET_START_HOUR,
            max_workers=settings.CONFLICT_VALIDATION_WORKERS,
            setup_matrix=self._loader.setup_matrix({m.machine_type for m in machines}),
        )
        return detector.validate(slots, start, end)

    def _refresh_work_order_status(self, work_order_ids: Iterable[int]) -> None:
        self._db.flush()
        now = datetime.utcnow()
        for row in self._work_order_repo.get_many(sorted(set(work_order_ids))):
            status = derive_work_order_status(
                self._loader.operations([row.id]),
                self._loader.slots(work_order_ids=[row.id]),
                now=now,
            )
            if row.status != status:
                row.status = status

    def _publish_conflicts(self, source: str, conflicts: Sequence[SchedulingConflict]) -> None:
        if conflicts:
            self._bus.publish(ConflictsDetectedEvent(source=source, conflicts=[conflict_to_dict(c) for c in conflicts]))

    # ── PlanSchedule ──────────────────────────────────────────────────────────

    def plan_schedule(self, body: PlanScheduleRequest) -> PlanScheduleResponse:
        policy = policy_from_schema(body.policy)
        return self.plan_work_orders(
            work_order_ids=body.work_order_ids,
            policy=policy,
            start=body.start,
            end=body.end,
            granularity=resolve_granularity(body.granularity),
            plan_id=body.plan_id,
        )

    def plan_work_orders(
        self,
        work_order_ids: Sequence[int],
        policy: SchedulingPolicy,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.DAILY,
        plan_id: Optional[int] = None,
    ) -> PlanScheduleResponse:
        if end <= start:
            raise InvalidPolicyError(["Schedule range end must be after start"])
        plan = None
        if plan_id is not None:
            plan = self._plan_repo.get_by_id(plan_id)
            if not plan:
                raise EntityNotFoundException("ProductionPlan", plan_id)

        work_orders = self._loader.work_orders(work_order_ids)
        operations = self._loader.operations(work_orders)
        order_slots = self._loader.slots(work_order_ids=list(work_orders))
        started = {s.operation_id for s in order_slots if s.status in (SlotStatus.IN_PROGRESS, SlotStatus.COMPLETED)}
        pending = [op for op in operations if op.id not in started]
        pending_ids = {op.id for op in pending}

        op_types = sorted({op.operation_type for op in pending})
        capabilities = self._loader.capabilities(operation_types=op_types) if op_types else []
        machine_ids = sorted({c.machine_id for c in capabilities})
        machines = self._loader.machines(machine_ids) if machine_ids else []

        with self._machine_leases(machine_ids):
            versions = self._state_repo.versions(machine_ids)

            existing: Dict[int, Slot] = {}
            for slot in self._loader.slots(machine_ids=machine_ids, start=start - BUCKET_MARGIN, end=end + BUCKET_MARGIN):
                existing[slot.id] = slot
            for slot in order_slots:
                existing[slot.id] = slot
            kept = [s for s in existing.values() if s.operation_id not in pending_ids]

            ordered = order_operations(pending, work_orders, policy.rule, now=datetime.utcnow())
            allocator = Allocator(
                machines,
                capabilities,
                policy,
                downtime=self._loader.downtime(start - BUCKET_MARGIN, end + BUCKET_MARGIN, machine_ids=machine_ids),
                existing_slots=kept,
                granularity=granularity,
                default_calendar=default_calendar(),
                known_operations=operations,
                shift_start_hour=settings.SHIFT_BUCKET_START_HOUR,
                setup_matrix=self._loader.setup_matrix({m.machine_type for m in machines}),
            )
            result = allocator.allocate(ordered, work_orders, start, end)

            self._slot_repo.delete_open_for_operations(pending_ids)
            rows = [
                ScheduleSlot(
                    plan_id=plan_id,
                    work_order_id=slot.work_order_id,
                    operation_id=slot.operation_id,
                    machine_id=slot.machine_id,
                    start_time=slot.start,
                    end_time=slot.end,
                    setup_minutes=slot.setup_minutes,
                    status=slot.status.value,
                    priority=slot.priority.value if slot.priority else None,
                    duration_override=False,
                )
                for slot in result.slots
            ]
            self._db.add_all(rows)
            self._db.flush()

            new_ids = {row.id for row in rows}
            snapshot = self._loader.slots(machine_ids=machine_ids, start=start - BUCKET_MARGIN, end=end + BUCKET_MARGIN)
            detected = self._detect(
                snapshot,
                policy,
                granularity,
                self._loader.operations_by_id({s.operation_id for s in snapshot}),
                machines=machines,
            )
            conflicts = set(result.conflicts)
            conflicts.update(c for c in detected if new_ids.intersection(c.slot_ids))
            conflicts = sorted(conflicts, key=SchedulingConflict.sort_key)

            stale = self._state_repo.bump_versions(versions)
            if stale:
                logger.warning("schedule_version_conflict machine_ids=%s", stale)
                raise ConcurrentModificationError(stale)

            self._refresh_work_order_status(work_orders)
            if plan is not None:
                plan.last_scheduled_at = datetime.utcnow()
                plan.policy_json = json.dumps(policy_to_dict(policy))
            self._db.commit()
            for row in rows:
                self._db.refresh(row)

        logger.info(
            "schedule_planned plan_id=%s work_orders=%s slots=%s unplaced=%s conflicts=%s",
            plan_id,
            len(work_orders),
            len(rows),
            len(result.unplaced_operation_ids),
            len(conflicts),
        )
        self._bus.publish(
            ScheduleGeneratedEvent(
                plan_id=plan_id,
                work_order_ids=sorted(work_orders),
                slot_ids=[row.id for row in rows],
                unplaced_operation_ids=list(result.unplaced_operation_ids),
                rule=policy.rule.value,
            )
        )
        self._publish_conflicts("plan_schedule", conflicts)

        return PlanScheduleResponse(
            plan_id=plan_id,
            rule=policy.rule.value,
            slots=_slot_responses(rows),
            conflicts=_conflict_responses(conflicts),
            unplaced_operation_ids=list(result.unplaced_operation_ids),
        )

    # ── ValidateSlots ─────────────────────────────────────────────────────────

    def validate_slots(self, body: ValidateSlotsRequest) -> ValidateSlotsResponse:
        policy = policy_from_schema(body.policy)
        granularity = resolve_granularity(body.granularity)
        if not body.slots:
            return ValidateSlotsResponse(valid=True, conflicts=[])

        operations = self._loader.operations_by_id({c.operation_id for c in body.slots})
        machines = self._loader.machines({c.machine_id for c in body.slots})
        machine_ids = {m.id for m in machines}

        errors: List[str] = []
        for idx, candidate in enumerate(body.slots):
            label = f"slot {candidate.id}" if candidate.id is not None else f"slot[{idx}]"
            if candidate.end_time <= candidate.start_time:
                errors.append(f"{label}: end_time must be after start_time")
            if candidate.operation_id not in operations:
                errors.append(f"{label}: operation {candidate.operation_id} not found")
            if candidate.machine_id not in machine_ids:
                errors.append(f"{label}: machine {candidate.machine_id} not found")
        if errors:
            raise MalformedSlotError(errors)

        slots = [
            Slot(
                id=c.id,
                operation_id=c.operation_id,
                work_order_id=operations[c.operation_id].work_order_id,
                machine_id=c.machine_id,
                start=c.start_time,
                end=c.end_time,
                setup_minutes=c.setup_minutes,
            )
            for c in body.slots
        ]
        conflicts = self._detect(slots, policy, granularity, operations, machines=machines)
        self._publish_conflicts("validate", conflicts)
        return ValidateSlotsResponse(valid=not conflicts, conflicts=_conflict_responses(conflicts))

    # ── BulkUpdateSlots ───────────────────────────────────────────────────────

    def bulk_update_slots(self, body: BulkUpdateSlotsRequest) -> BulkUpdateSlotsResponse:
        policy = policy_from_schema(body.policy)
        granularity = resolve_granularity(None)
        strict = settings.BULK_UPDATE_STRICT if body.strict is None else body.strict

        slot_ids = [c.slot_id for c in body.updates]
        if len(set(slot_ids)) != len(slot_ids):
            raise MalformedSlotError(["Each slot may appear only once per bulk update"])
        rows = {row.id: row for row in self._slot_repo.get_many(slot_ids)}
        for slot_id in slot_ids:
            if slot_id not in rows:
                raise EntityNotFoundException("ScheduleSlot", slot_id)

        target_machines = {c.machine_id for c in body.updates if c.machine_id is not None}
        found = {m.id for m in self._loader.machines(target_machines)} if target_machines else set()
        missing = sorted(target_machines - found)
        if missing:
            raise MalformedSlotError([f"machine {mid} not found" for mid in missing])
        machine_ids = sorted({row.machine_id for row in rows.values()} | target_machines)

        stale: List[int] = []
        for attempt in range(settings.BULK_UPDATE_MAX_RETRIES + 1):
            with self._machine_leases(machine_ids):
                versions = self._state_repo.versions(machine_ids)
                applied, updated, conflicts = self._apply_changes(body.updates, policy, granularity, strict, machine_ids)
                if not applied:
                    logger.info(
                        "bulk_update_rejected slot_ids=%s conflicts=%s",
                        slot_ids,
                        len(conflicts),
                    )
                    self._bus.publish(SlotsUpdatedEvent(slot_ids=slot_ids, machine_ids=machine_ids, applied=False))
                    self._publish_conflicts("bulk_update", conflicts)
                    return BulkUpdateSlotsResponse(
                        applied=False,
                        slots=_slot_responses(updated),
                        conflicts=_conflict_responses(conflicts),
                    )

                stale = self._state_repo.bump_versions(versions)
                if not stale:
                    self._db.commit()
                    for row in updated:
                        self._db.refresh(row)
                    logger.info(
                        "bulk_update_applied slot_ids=%s machines=%s conflicts=%s attempt=%s",
                        slot_ids,
                        machine_ids,
                        len(conflicts),
                        attempt + 1,
                    )
                    self._bus.publish(SlotsUpdatedEvent(slot_ids=slot_ids, machine_ids=machine_ids, applied=True))
                    self._publish_conflicts("bulk_update", conflicts)
                    return BulkUpdateSlotsResponse(
                        applied=True,
                        slots=_slot_responses(updated),
                        conflicts=_conflict_responses(conflicts),
                    )

                self._db.rollback()
            logger.warning("bulk_update_retry attempt=%s stale_machine_ids=%s", attempt + 1, stale)

        raise ConcurrentModificationError(stale)

    def _apply_changes(
        self,
        changes: Sequence[SlotChange],
        policy: SchedulingPolicy,
        granularity: Granularity,
        strict: bool,
        machine_ids: Sequence[int],
    ) -> Tuple[bool, List[ScheduleSlot], List[SchedulingConflict]]:
        """Apply changes in the open transaction and revalidate; rolls back when strict and critical."""
        self._db.expire_all()
        slot_ids = [c.slot_id for c in changes]
        rows = {row.id: row for row in self._slot_repo.get_many(slot_ids)}
        operations = self._loader.operations_by_id({row.operation_id for row in rows.values()})

        errors: List[str] = []
        planned: Dict[int, Dict] = {}
        for change in changes:
            row = rows[change.slot_id]
            op = operations.get(row.operation_id)
            if op is None:
                errors.append(f"slot {row.id}: operation {row.operation_id} not found")
                continue
            override = bool(row.duration_override) if change.duration_override is None else change.duration_override
            start = change.start_time or row.start_time
            if override:
                end = change.end_time or start + (row.end_time - row.start_time)
            else:
                end = start + timedelta(minutes=op.duration_minutes)
                if change.end_time is not None and change.end_time != end:
                    errors.append(
                        f"slot {row.id}: end_time must be start_time + {op.duration_minutes:g} minutes "
                        f"unless duration_override is set"
                    )
                    continue
            if end <= start:
                errors.append(f"slot {row.id}: end_time must be after start_time")
                continue

            updates = {"start_time": start, "end_time": end, "duration_override": override}
            if change.machine_id is not None:
                updates["machine_id"] = change.machine_id
            if change.status is not None:
                updates["status"] = change.status
            if change.assigned_operator is not None:
                updates["assigned_operator"] = change.assigned_operator
            if change.tags is not None:
                updates["tags_json"] = json.dumps(change.tags)
            planned[row.id] = updates
        if errors:
            raise MalformedSlotError(errors)

        window_start = min([r.start_time for r in rows.values()] + [u["start_time"] for u in planned.values()])
        window_end = max([r.end_time for r in rows.values()] + [u["end_time"] for u in planned.values()])
        work_order_ids = sorted({row.work_order_id for row in rows.values()})

        for slot_id, updates in planned.items():
            for key, value in updates.items():
                setattr(rows[slot_id], key, value)
        self._db.flush()

        snapshot: Dict[int, Slot] = {}
        for slot in self._loader.slots(
            machine_ids=machine_ids,
            start=window_start - BUCKET_MARGIN,
            end=window_end + BUCKET_MARGIN,
        ):
            snapshot[slot.id] = slot
        for slot in self._loader.slots(work_order_ids=work_order_ids):
            snapshot[slot.id] = slot
        slots = list(snapshot.values())
        detected = self._detect(
            slots,
            policy,
            granularity,
            self._loader.operations_by_id({s.operation_id for s in slots}),
        )
        touched = set(slot_ids)
        conflicts = [c for c in detected if touched.intersection(c.slot_ids)]

        if strict and any(c.severity == Severity.CRITICAL for c in conflicts):
            self._db.rollback()
            originals = self._slot_repo.get_many(slot_ids)
            return False, sorted(originals, key=lambda r: slot_ids.index(r.id)), conflicts

        self._refresh_work_order_status(work_order_ids)
        return True, [rows[sid] for sid in slot_ids], conflicts

    # ── Capacity & slot queries ───────────────────────────────────────────────

    def get_capacity_buckets(
        self,
        start: datetime,
        end: datetime,
        granularity: Optional[str] = None,
        machine_ids: Optional[List[int]] = None,
    ) -> List[CapacityBucketResponse]:
        if end <= start:
            raise BusinessRuleViolationException("Capacity range end must be after start")
        resolved = resolve_granularity(granularity)
        machines = self._loader.machines(machine_ids)
        if machine_ids:
            found = {m.id for m in machines}
            for mid in machine_ids:
                if mid not in found:
                    raise EntityNotFoundException("Machine", mid)

        ids = [m.id for m in machines]
        slots = self._loader.slots(machine_ids=ids, start=start - BUCKET_MARGIN, end=end + BUCKET_MARGIN)
        downtime = self._loader.downtime(start - BUCKET_MARGIN, end + BUCKET_MARGIN, machine_ids=ids)
        buckets: List[CapacityBucket] = []
        for machine in machines:
            buckets.extend(
                build_buckets(
                    machine,
                    machine.calendar or default_calendar(),
                    start,
                    end,
                    resolved,
                    slots=slots,
                    downtime=downtime,
                    shift_start_hour=settings.SHIFT_BUCKET_START_HOUR,
                )
            )
        return [_bucket_response(b) for b in buckets]

    def list_slots(
        self,
        plan_id: Optional[int] = None,
        machine_id: Optional[int] = None,
        work_order_id: Optional[int] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ScheduleSlot]:
        return self._slot_repo.list_filtered(
            plan_id=plan_id,
            machine_ids=[machine_id] if machine_id is not None else None,
            work_order_ids=[work_order_id] if work_order_id is not None else None,
            status=status,
            start=start,
            end=end,
        )

    def update_slot_status(self, slot_id: int, body: SlotStatusUpdateRequest) -> ScheduleSlot:
        row = self._slot_repo.get_by_id(slot_id)
        if not row:
            raise EntityNotFoundException("ScheduleSlot", slot_id)
        row.status = body.status
        self._refresh_work_order_status([row.work_order_id])
        self._db.commit()
        self._db.refresh(row)
        self._bus.publish(SlotsUpdatedEvent(slot_ids=[row.id], machine_ids=[row.machine_id], applied=True))
        return row
