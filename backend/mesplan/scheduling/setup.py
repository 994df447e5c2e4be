"""
Setup Matrix

Sequence-dependent changeover between consecutive operations on a machine.
A rule keyed by (machine type, from family, to family) wins; otherwise the
incoming operation's own setup minutes apply.
"""
from typing import Dict, Iterable, Optional, Tuple

from mesplan.scheduling.types import ChangeoverRule, OperationInfo


class SetupMatrix:
    def __init__(self, rules: Iterable[ChangeoverRule] = ()):
        self._rules: Dict[Tuple[str, str, str], float] = {
            (r.machine_type, r.from_family, r.to_family): float(r.minutes) for r in rules
        }

    def __len__(self) -> int:
        return len(self._rules)

    def changeover(
        self,
        machine_type: str,
        previous: Optional[OperationInfo],
        current: OperationInfo,
    ) -> float:
        """Minutes the machine needs between ``previous`` finishing and ``current`` starting."""
        if previous is not None and previous.family and current.family:
            minutes = self._rules.get((machine_type, previous.family, current.family))
            if minutes is not None:
                return minutes
        return float(current.setup_minutes or 0.0)
