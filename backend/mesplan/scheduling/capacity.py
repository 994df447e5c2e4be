"""
Capacity Bucket Model

Discretizes a machine's availability into shift / daily / weekly buckets.
Buckets are derived data: they are rebuilt from the slot set, the machine
calendar and declared downtime whenever they are needed, never stored.
"""
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from mesplan.scheduling.types import (
    CapacityBucket,
    DowntimeWindow,
    Granularity,
    MachineCalendar,
    MachineInfo,
    MachineStatus,
    ShiftWindow,
    Slot,
    merge_intervals,
    overlap_minutes,
    subtract_intervals,
)

SHIFT_HOURS = 8
SHIFT_NAMES = ("Shift-A", "Shift-B", "Shift-C")

Interval = Tuple[datetime, datetime]


def parse_calendar(shifts: Iterable[Tuple[str, str, str]], work_days: Iterable[int]) -> MachineCalendar:
    """Build a calendar from ("Shift-A", "06:00", "14:00") style tuples."""
    windows = tuple(
        ShiftWindow(name=name, start=time.fromisoformat(start), end=time.fromisoformat(end))
        for name, start, end in shifts
    )
    return MachineCalendar(shifts=windows, work_days=frozenset(int(d) for d in work_days))


def continuous_calendar() -> MachineCalendar:
    """Round-the-clock calendar for machines with no calendar of their own."""
    return MachineCalendar(shifts=(ShiftWindow(name="All-Day", start=time.min, end=time.min),))


def bucket_windows(
    start: datetime,
    end: datetime,
    granularity: Granularity,
    shift_start_hour: int = 6,
) -> List[Tuple[date, Optional[str], datetime, datetime]]:
    """(bucket date, shift name, window start, window end) for every bucket intersecting [start, end)."""
    granularity = Granularity(granularity)
    windows = []
    if granularity == Granularity.DAILY:
        day = start.date()
        while datetime.combine(day, time.min) < end:
            ws = datetime.combine(day, time.min)
            windows.append((day, None, ws, ws + timedelta(days=1)))
            day += timedelta(days=1)
    elif granularity == Granularity.WEEKLY:
        day = start.date() - timedelta(days=start.weekday())
        while datetime.combine(day, time.min) < end:
            ws = datetime.combine(day, time.min)
            windows.append((day, None, ws, ws + timedelta(days=7)))
            day += timedelta(days=7)
    else:
        # Shift-C of the previous day may spill past midnight into the range.
        day = start.date() - timedelta(days=1)
        while datetime.combine(day, time.min) < end:
            anchor = datetime.combine(day, time(hour=shift_start_hour))
            for idx, name in enumerate(SHIFT_NAMES):
                ws = anchor + timedelta(hours=SHIFT_HOURS * idx)
                we = ws + timedelta(hours=SHIFT_HOURS)
                if we > start and ws < end:
                    windows.append((day, name, ws, we))
            day += timedelta(days=1)
    return windows


def available_intervals(
    machine: MachineInfo,
    calendar: MachineCalendar,
    downtime: Sequence[DowntimeWindow],
    start: datetime,
    end: datetime,
) -> List[Interval]:
    """Working time in [start, end) net of downtime and any maintenance window."""
    intervals = calendar.working_intervals(start, end)
    cuts: List[Interval] = [(d.start, d.end) for d in downtime if d.machine_id == machine.id]
    if machine.status == MachineStatus.MAINTENANCE:
        cuts.append((start, machine.status_until or end))
    if machine.status == MachineStatus.OFFLINE:
        cuts.append((start, end))
    return subtract_intervals(intervals, cuts)


def _interval_minutes(intervals: Sequence[Interval], ws: datetime, we: datetime) -> float:
    return sum(overlap_minutes(s, e, ws, we) for s, e in intervals)


def build_buckets(
    machine: MachineInfo,
    calendar: MachineCalendar,
    start: datetime,
    end: datetime,
    granularity: Granularity = Granularity.DAILY,
    slots: Sequence[Slot] = (),
    downtime: Sequence[DowntimeWindow] = (),
    shift_start_hour: int = 6,
) -> List[CapacityBucket]:
    windows = bucket_windows(start, end, granularity, shift_start_hour)
    if not windows:
        return []
    span_start, span_end = windows[0][2], windows[-1][3]
    intervals = available_intervals(machine, calendar, downtime, span_start, span_end)
    machine_slots = [s for s in slots if s.machine_id == machine.id]

    buckets = []
    for day, shift, ws, we in windows:
        planned = sum(overlap_minutes(s.setup_start, s.end, ws, we) for s in machine_slots)
        buckets.append(
            CapacityBucket(
                machine_id=machine.id,
                date=day,
                shift=shift,
                window_start=ws,
                window_end=we,
                available_minutes=round(_interval_minutes(intervals, ws, we), 4),
                planned_minutes=round(planned, 4),
            )
        )
    return buckets


class BucketLedger:
    """
    Mutable, per-call view of one machine's buckets used by the allocator.

    Holds the machine's working intervals and the slots placed so far so a
    candidate window can be tested against post-assignment utilization.
    """

    def __init__(
        self,
        machine: MachineInfo,
        calendar: MachineCalendar,
        start: datetime,
        end: datetime,
        granularity: Granularity,
        slots: Sequence[Slot] = (),
        downtime: Sequence[DowntimeWindow] = (),
        shift_start_hour: int = 6,
    ):
        self.machine = machine
        self._windows = bucket_windows(start, end, granularity, shift_start_hour)
        span_start = self._windows[0][2] if self._windows else start
        span_end = self._windows[-1][3] if self._windows else end
        self.intervals = available_intervals(machine, calendar, downtime, span_start, span_end)
        self.slots: List[Slot] = sorted(
            (s for s in slots if s.machine_id == machine.id), key=lambda s: (s.start, s.end)
        )
        self._available = [_interval_minutes(self.intervals, ws, we) for _, _, ws, we in self._windows]
        self._planned = [
            sum(overlap_minutes(s.setup_start, s.end, ws, we) for s in self.slots) for _, _, ws, we in self._windows
        ]

    @property
    def machine_id(self) -> int:
        return self.machine.id

    def buckets(self) -> List[CapacityBucket]:
        return [
            CapacityBucket(
                machine_id=self.machine.id,
                date=day,
                shift=shift,
                window_start=ws,
                window_end=we,
                available_minutes=round(self._available[i], 4),
                planned_minutes=round(self._planned[i], 4),
            )
            for i, (day, shift, ws, we) in enumerate(self._windows)
        ]

    def utilization(self) -> float:
        available = sum(self._available)
        if available <= 0:
            return 0.0
        return sum(self._planned) / available

    def is_overloaded(self) -> bool:
        return any(b.is_overloaded for b in self.buckets())

    def bucket_at(self, moment: datetime) -> Optional[CapacityBucket]:
        for b in self.buckets():
            if b.window_start <= moment < b.window_end:
                return b
        return None

    def in_working_time(self, moment: datetime) -> bool:
        return any(s <= moment < e for s, e in self.intervals)

    def covered_by_working_time(self, start: datetime, end: datetime) -> bool:
        return any(s <= start and end <= e for s, e in merge_intervals(self.intervals))

    def previous_slot(self, moment: datetime) -> Optional[Slot]:
        """Last slot on the machine finishing at or before ``moment``."""
        before = [s for s in self.slots if s.end <= moment]
        return max(before, key=lambda s: (s.end, s.start)) if before else None

    def next_slot(self, moment: datetime) -> Optional[Slot]:
        """First slot on the machine starting at or after ``moment``."""
        after = [s for s in self.slots if s.start >= moment]
        return min(after, key=lambda s: (s.start, s.end)) if after else None

    def collides(self, start: datetime, end: datetime) -> bool:
        return any(s.setup_start < end and start < s.end for s in self.slots)

    def fits(self, start: datetime, end: datetime, ceiling: float) -> bool:
        """True when adding [start, end) keeps every touched bucket within ceiling."""
        for i, (_, _, ws, we) in enumerate(self._windows):
            extra = overlap_minutes(start, end, ws, we)
            if extra <= 0:
                continue
            available = self._available[i]
            if available <= 0:
                return False
            if self._planned[i] + extra > available * ceiling + 1e-9:
                return False
        return True

    def candidate_starts(self, earliest: datetime) -> List[datetime]:
        points = {earliest}
        points.update(s for s, _ in self.intervals if s >= earliest)
        points.update(slot.end for slot in self.slots if slot.end >= earliest)
        return sorted(p for p in points if self.in_working_time(p))

    def add(self, slot: Slot) -> None:
        self.slots.append(slot)
        self.slots.sort(key=lambda s: (s.start, s.end))
        for i, (_, _, ws, we) in enumerate(self._windows):
            self._planned[i] += overlap_minutes(slot.setup_start, slot.end, ws, we)
