# Routers package — Thin Controllers (SRP / DIP)
from mesplan.routers import production_plans, scheduling

__all__ = [
    "production_plans",
    "scheduling",
]
