import random
from datetime import datetime, timedelta

import pytest

from mesplan.core.exceptions import InvalidPolicyError
from mesplan.scheduling import build_policy, get_dispatch_rule, order_operations
from mesplan.scheduling.types import DispatchRule, OperationInfo, Priority, WorkOrderInfo

NOW = datetime(2026, 11, 2, 8, 0)


def _orders():
    # A due in 3 days, B in 5, C tomorrow.
    return {
        1: WorkOrderInfo(id=1, due_date=NOW + timedelta(days=3), priority=Priority.LOW, created_at=NOW - timedelta(hours=1)),
        2: WorkOrderInfo(id=2, due_date=NOW + timedelta(days=5), priority=Priority.CRITICAL, created_at=NOW - timedelta(hours=3)),
        3: WorkOrderInfo(id=3, due_date=NOW + timedelta(days=1), priority=Priority.MEDIUM, created_at=NOW - timedelta(hours=2)),
    }


def _ops():
    return [
        OperationInfo(id=10, work_order_id=1, operation_type="MILLING", duration_minutes=90),
        OperationInfo(id=20, work_order_id=2, operation_type="MILLING", duration_minutes=30),
        OperationInfo(id=30, work_order_id=3, operation_type="MILLING", duration_minutes=60),
    ]


def _ids(ops):
    return [op.id for op in ops]


def test_edd_orders_by_due_date():
    ordered = order_operations(_ops(), _orders(), "EDD", NOW)
    assert _ids(ordered) == [30, 10, 20]


def test_spt_orders_by_duration():
    ordered = order_operations(_ops(), _orders(), DispatchRule.SPT, NOW)
    assert _ids(ordered) == [20, 30, 10]


def test_fifo_orders_by_arrival():
    ordered = order_operations(_ops(), _orders(), "FIFO", NOW)
    assert _ids(ordered) == [20, 30, 10]


def test_priority_orders_critical_first_then_due_date():
    orders = _orders()
    orders[1] = WorkOrderInfo(id=1, due_date=orders[1].due_date, priority=Priority.MEDIUM)
    ordered = order_operations(_ops(), orders, "PRIORITY", NOW)
    # 2 is critical; 3 and 1 are both medium and fall back to due date.
    assert _ids(ordered) == [20, 30, 10]


def test_critical_ratio_puts_late_orders_first():
    orders = _orders()
    orders[2] = WorkOrderInfo(id=2, due_date=NOW - timedelta(hours=4))
    ordered = order_operations(_ops(), orders, "CR", NOW)
    assert ordered[0].id == 20
    rule = get_dispatch_rule("CR")
    assert rule.display_name == "Critical Ratio"


def test_critical_ratio_counts_remaining_work_of_later_operations():
    due = NOW + timedelta(hours=10)
    orders = {
        1: WorkOrderInfo(id=1, due_date=due),
        2: WorkOrderInfo(id=2, due_date=due),
    }
    ops = [
        # Same slack, but order 1 still has 480 minutes of work behind its first step.
        OperationInfo(id=11, work_order_id=1, operation_type="MILLING", duration_minutes=60, sequence=1),
        OperationInfo(id=12, work_order_id=1, operation_type="TURNING", duration_minutes=420, sequence=2),
        OperationInfo(id=21, work_order_id=2, operation_type="MILLING", duration_minutes=60, sequence=1),
    ]
    ordered = order_operations(ops, orders, "CR", NOW)
    assert ordered[0].id == 11


def test_edd_ties_break_by_work_order_then_sequence():
    due = NOW + timedelta(days=2)
    orders = {5: WorkOrderInfo(id=5, due_date=due), 4: WorkOrderInfo(id=4, due_date=due)}
    ops = [
        OperationInfo(id=52, work_order_id=5, operation_type="TURNING", duration_minutes=10, sequence=2),
        OperationInfo(id=51, work_order_id=5, operation_type="MILLING", duration_minutes=10, sequence=1),
        OperationInfo(id=41, work_order_id=4, operation_type="MILLING", duration_minutes=10, sequence=1),
    ]
    assert _ids(order_operations(ops, orders, "EDD", NOW)) == [41, 51, 52]


def test_edd_work_order_tie_break_is_numeric():
    due = NOW + timedelta(days=2)
    orders = {10: WorkOrderInfo(id=10, due_date=due), 9: WorkOrderInfo(id=9, due_date=due)}
    ops = [
        OperationInfo(id=100, work_order_id=10, operation_type="MILLING", duration_minutes=10),
        OperationInfo(id=90, work_order_id=9, operation_type="MILLING", duration_minutes=10),
    ]
    # "10" < "9" as text; work order 9 still goes first.
    assert _ids(order_operations(ops, orders, "EDD", NOW)) == [90, 100]


@pytest.mark.parametrize("rule", [r.value for r in DispatchRule])
def test_ordering_is_deterministic_regardless_of_input_order(rule):
    ops = _ops()
    expected = _ids(order_operations(ops, _orders(), rule, NOW))
    shuffled = list(ops)
    random.Random(7).shuffle(shuffled)
    assert _ids(order_operations(shuffled, _orders(), rule, NOW)) == expected


def test_unknown_rule_is_invalid_policy():
    with pytest.raises(InvalidPolicyError) as exc:
        order_operations(_ops(), _orders(), "LIFO", NOW)
    assert exc.value.code == "INVALID_POLICY"
    assert exc.value.status_code == 400


def test_operation_with_unknown_work_order_is_rejected():
    ops = _ops() + [OperationInfo(id=99, work_order_id=99, operation_type="MILLING", duration_minutes=5)]
    with pytest.raises(KeyError):
        order_operations(ops, _orders(), "EDD", NOW)


# ── build_policy ──────────────────────────────────────────────────────────────

def test_build_policy_accepts_lowercase_rule_and_defaults_horizon():
    policy = build_policy("spt", default_horizon_hours=72)
    assert policy.rule == DispatchRule.SPT
    assert policy.horizon_hours == 72
    assert policy.utilization_ceiling == 1.0


def test_build_policy_ignores_overload_percentage_when_overload_disallowed():
    policy = build_policy("EDD", allow_overload=False, max_overload_percentage=40)
    assert policy.max_overload_percentage is None
    assert policy.overload_tolerance == 0.0


def test_build_policy_overload_percentage_is_a_percent():
    policy = build_policy("EDD", allow_overload=True, max_overload_percentage=25)
    assert policy.overload_tolerance == pytest.approx(0.25)
    assert policy.utilization_ceiling == pytest.approx(1.25)


def test_build_policy_collects_every_error():
    with pytest.raises(InvalidPolicyError) as exc:
        build_policy("NOPE", horizon_hours=10, allow_overload=True, max_overload_percentage=150)
    errors = exc.value.errors
    assert len(errors) == 3
    assert any("NOPE" in e for e in errors)
    assert any("horizon" in e for e in errors)
    assert any("overload" in e for e in errors)


@pytest.mark.parametrize("hours", [23, 8761])
def test_build_policy_rejects_horizon_out_of_range(hours):
    with pytest.raises(InvalidPolicyError):
        build_policy("EDD", horizon_hours=hours)


def test_build_policy_rejects_non_positive_reschedule_interval():
    with pytest.raises(InvalidPolicyError):
        build_policy("EDD", reschedule_interval_minutes=0)
