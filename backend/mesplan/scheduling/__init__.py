"""
Scheduling & capacity planning engine.

Pure functions and classes over the value types in ``types``; no database
session, no module-level mutable state.
"""
from mesplan.scheduling.allocator import Allocator
from mesplan.scheduling.capacity import build_buckets
from mesplan.scheduling.conflicts import ConflictDetector
from mesplan.scheduling.dispatch import build_policy, get_dispatch_rule, order_operations
from mesplan.scheduling.metrics import aggregate_plan, derive_work_order_status
from mesplan.scheduling.setup import SetupMatrix

__all__ = [
    "Allocator",
    "ConflictDetector",
    "SetupMatrix",
    "aggregate_plan",
    "build_buckets",
    "build_policy",
    "derive_work_order_status",
    "get_dispatch_rule",
    "order_operations",
]
