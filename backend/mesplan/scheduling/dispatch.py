"""
Dispatch Rule Strategy Pattern — GoF Strategy Pattern

Each dispatch rule (EDD, SPT, CR, FIFO, PRIORITY) is an interchangeable
strategy that produces a sort key per operation. Ordering is a pure function of
operation and work order data: stable, deterministic, no side effects.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from mesplan.core.exceptions import InvalidPolicyError
from mesplan.scheduling.types import (
    MAX_HORIZON_HOURS,
    MIN_HORIZON_HOURS,
    DispatchRule,
    OperationInfo,
    SchedulingPolicy,
    WorkOrderInfo,
)


class DispatchContext:
    """Per-call data shared by the sort keys: parent work orders, `now`, remaining work."""

    def __init__(self, operations: List[OperationInfo], work_orders: Mapping[int, WorkOrderInfo], now: datetime):
        self.work_orders = work_orders
        self.now = now
        self._remaining: Dict[int, float] = {}
        by_order: Dict[int, List[OperationInfo]] = {}
        for op in operations:
            by_order.setdefault(op.work_order_id, []).append(op)
        for ops in by_order.values():
            for op in ops:
                self._remaining[op.id] = sum(o.duration_minutes for o in ops if o.sequence >= op.sequence)

    def work_order(self, op: OperationInfo) -> WorkOrderInfo:
        return self.work_orders[op.work_order_id]

    def remaining_minutes(self, op: OperationInfo) -> float:
        return self._remaining.get(op.id, op.duration_minutes)

    def identity(self, op: OperationInfo) -> Tuple:
        return (op.work_order_id, op.sequence, op.id)

    def edd_key(self, op: OperationInfo) -> Tuple:
        return (self.work_order(op).due_date,) + self.identity(op)


# ── Abstract Strategy ────────────────────────────────────────────────────────

class BaseDispatchRule(ABC):

    @property
    @abstractmethod
    def rule(self) -> DispatchRule:
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @abstractmethod
    def sort_key(self, op: OperationInfo, ctx: DispatchContext) -> Tuple:
        ...

    def order(
        self,
        operations: List[OperationInfo],
        work_orders: Mapping[int, WorkOrderInfo],
        now: datetime,
    ) -> List[OperationInfo]:
        ctx = DispatchContext(operations, work_orders, now)
        return sorted(operations, key=lambda op: self.sort_key(op, ctx))


# ── Concrete strategies ──────────────────────────────────────────────────────

class EarliestDueDateRule(BaseDispatchRule):

    @property
    def rule(self) -> DispatchRule:
        return DispatchRule.EDD

    @property
    def display_name(self) -> str:
        return "Earliest Due Date"

    def sort_key(self, op, ctx):
        return ctx.edd_key(op)


class ShortestProcessingTimeRule(BaseDispatchRule):

    @property
    def rule(self) -> DispatchRule:
        return DispatchRule.SPT

    @property
    def display_name(self) -> str:
        return "Shortest Processing Time"

    def sort_key(self, op, ctx):
        return (op.duration_minutes,) + ctx.edd_key(op)


class CriticalRatioRule(BaseDispatchRule):
    """(due - now) / remaining processing time; late orders (ratio <= 0) come first."""

    @property
    def rule(self) -> DispatchRule:
        return DispatchRule.CR

    @property
    def display_name(self) -> str:
        return "Critical Ratio"

    def ratio(self, op: OperationInfo, ctx: DispatchContext) -> float:
        slack_minutes = (ctx.work_order(op).due_date - ctx.now).total_seconds() / 60.0
        remaining = max(ctx.remaining_minutes(op), 1.0)
        return slack_minutes / remaining

    def sort_key(self, op, ctx):
        return (self.ratio(op, ctx),) + ctx.identity(op)


class FirstInFirstOutRule(BaseDispatchRule):

    @property
    def rule(self) -> DispatchRule:
        return DispatchRule.FIFO

    @property
    def display_name(self) -> str:
        return "First In, First Out"

    def sort_key(self, op, ctx):
        wo = ctx.work_order(op)
        return (wo.created_at or datetime.min,) + ctx.identity(op)


class PriorityRule(BaseDispatchRule):

    @property
    def rule(self) -> DispatchRule:
        return DispatchRule.PRIORITY

    @property
    def display_name(self) -> str:
        return "Priority"

    def sort_key(self, op, ctx):
        return (-ctx.work_order(op).priority.rank,) + ctx.edd_key(op)


# ── Factory ──────────────────────────────────────────────────────────────────

_RULES: Dict[DispatchRule, BaseDispatchRule] = {
    s.rule: s
    for s in (
        EarliestDueDateRule(),
        ShortestProcessingTimeRule(),
        CriticalRatioRule(),
        FirstInFirstOutRule(),
        PriorityRule(),
    )
}


def get_dispatch_rule(rule) -> BaseDispatchRule:
    try:
        return _RULES[DispatchRule(rule)]
    except ValueError:
        raise InvalidPolicyError([f"Unknown scheduling rule '{rule}'"]) from None


def order_operations(
    operations: List[OperationInfo],
    work_orders: Mapping[int, WorkOrderInfo],
    rule,
    now: datetime,
) -> List[OperationInfo]:
    missing = sorted({op.work_order_id for op in operations if op.work_order_id not in work_orders})
    if missing:
        raise KeyError(f"Operations reference unknown work orders: {missing}")
    return get_dispatch_rule(rule).order(operations, work_orders, now)


def build_policy(
    rule,
    horizon_hours: Optional[int] = None,
    allow_overload: bool = False,
    max_overload_percentage: Optional[float] = None,
    reschedule_interval_minutes: Optional[int] = None,
    default_horizon_hours: int = 168,
) -> SchedulingPolicy:
    """Validate raw policy fields, collecting every problem before raising."""
    errors: List[str] = []

    try:
        parsed_rule = DispatchRule(str(rule).upper()) if rule is not None else None
    except ValueError:
        parsed_rule = None
    if parsed_rule is None:
        errors.append(f"Unknown scheduling rule '{rule}'")

    horizon = default_horizon_hours if horizon_hours is None else horizon_hours
    if not MIN_HORIZON_HOURS <= horizon <= MAX_HORIZON_HOURS:
        errors.append(f"Planning horizon must be between {MIN_HORIZON_HOURS} and {MAX_HORIZON_HOURS} hours")

    if max_overload_percentage is not None and not 0 <= max_overload_percentage <= 100:
        errors.append("Max overload percentage must be between 0 and 100")

    if reschedule_interval_minutes is not None and reschedule_interval_minutes <= 0:
        errors.append("Reschedule interval must be positive")

    if errors:
        raise InvalidPolicyError(errors)

    return SchedulingPolicy(
        rule=parsed_rule,
        horizon_hours=horizon,
        allow_overload=bool(allow_overload),
        max_overload_percentage=max_overload_percentage if allow_overload else None,
        reschedule_interval_minutes=reschedule_interval_minutes,
    )
