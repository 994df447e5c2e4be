"""
Integration Tests — Scheduling Endpoints

Tests:
- POST /api/v1/scheduling/plan
- POST /api/v1/scheduling/validate
- POST /api/v1/scheduling/slots/bulk-update
- GET /api/v1/scheduling/capacity-buckets
- GET /api/v1/scheduling/slots
- PATCH /api/v1/scheduling/slots/{id}/status
- Changeover reservation from the setup matrix
"""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from mesplan.config import settings
from mesplan.core.exceptions import ConcurrentModificationError
from mesplan.models.machine import SetupMatrixEntry
from mesplan.models.work_order import WorkOrder
from mesplan.repositories.machine_schedule_state_repository import MachineScheduleStateRepository
from mesplan.schemas.scheduling import BulkUpdateSlotsRequest
from mesplan.services.scheduling_service import SchedulingService
from tests.conftest import DAY1, operations_of

API = "/api/v1/scheduling"


def _iso(value: datetime) -> str:
    return value.isoformat()


def _ts(raw: str) -> datetime:
    return datetime.fromisoformat(raw)


def _plan(client, work_order_ids, days=3, **policy):
    return client.post(
        f"{API}/plan",
        json={
            "work_order_ids": work_order_ids,
            "start": _iso(DAY1),
            "end": _iso(DAY1 + timedelta(days=days)),
            "policy": {"rule": "EDD", **policy},
        },
    )


@pytest.fixture
def mill(make_machine):
    return make_machine("MILL-1", operation_types=("MILLING",))


@pytest.fixture
def two_short_orders(mill, make_work_order):
    first = make_work_order([("MILLING", 60)], due_date=DAY1 + timedelta(days=1))
    second = make_work_order([("MILLING", 60)], due_date=DAY1 + timedelta(days=2))
    return first, second


class TestPlanSchedule:
    def test_second_order_moves_to_next_day_when_first_fills_capacity(self, client: TestClient, db, mill, make_work_order):
        a = make_work_order([("MILLING", 300)], due_date=DAY1 + timedelta(days=2))
        b = make_work_order([("MILLING", 300)], due_date=DAY1 + timedelta(days=2))

        resp = _plan(client, [a.id, b.id])
        assert resp.status_code == 201
        data = resp.json()

        slots = {s["work_order_id"]: s for s in data["slots"]}
        assert _ts(slots[a.id]["start_time"]) == DAY1
        assert _ts(slots[a.id]["end_time"]) == DAY1 + timedelta(minutes=300)
        assert _ts(slots[b.id]["start_time"]) == DAY1 + timedelta(days=1)
        assert all(s["machine_id"] == mill.id for s in data["slots"])

        assert data["unplaced_operation_ids"] == []
        exceeded = [c for c in data["conflicts"] if c["kind"] == "capacity_exceeded"]
        assert len(exceeded) == 1
        assert exceeded[0]["severity"] == "warning"
        assert exceeded[0]["operation_ids"] == [operations_of(db, b.id)[0].id]

        db.expire_all()
        assert db.get(WorkOrder, a.id).status == "scheduled"

    def test_operation_without_capable_machine_is_reported(self, client: TestClient, db, mill, make_work_order):
        wo = make_work_order([("GRINDING", 60)])

        resp = _plan(client, [wo.id])
        assert resp.status_code == 201
        data = resp.json()
        assert data["slots"] == []
        op_id = operations_of(db, wo.id)[0].id
        assert data["unplaced_operation_ids"] == [op_id]
        assert [(c["kind"], c["severity"]) for c in data["conflicts"]] == [("no_feasible_machine", "critical")]

    def test_replanning_replaces_open_slots(self, client: TestClient, two_short_orders):
        ids = [wo.id for wo in two_short_orders]
        _plan(client, ids)
        _plan(client, ids)

        resp = client.get(f"{API}/slots")
        assert resp.status_code == 200
        assert len(resp.json()) == 2

    def test_unknown_rule_is_invalid_policy(self, client: TestClient, two_short_orders):
        resp = _plan(client, [two_short_orders[0].id], rule="LIFO")
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_POLICY"

    def test_overload_percentage_out_of_range_is_invalid_policy(self, client: TestClient, two_short_orders):
        resp = _plan(client, [two_short_orders[0].id], allow_overload=True, max_overload_percentage=140)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_POLICY"

    def test_inverted_range_is_invalid_policy(self, client: TestClient, two_short_orders):
        resp = client.post(
            f"{API}/plan",
            json={
                "work_order_ids": [two_short_orders[0].id],
                "start": _iso(DAY1 + timedelta(days=1)),
                "end": _iso(DAY1),
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_POLICY"

    def test_unknown_work_order_is_404(self, client: TestClient, mill):
        resp = _plan(client, [9999])
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_leased_machine_rejects_plan(self, client: TestClient, db, two_short_orders, mill):
        MachineScheduleStateRepository(db).acquire_leases([mill.id], "someone-else", 300)

        resp = _plan(client, [wo.id for wo in two_short_orders])
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"]["code"] == "MACHINE_BUSY"
        assert body["error"]["details"]["machine_ids"] == [mill.id]

    def test_request_id_is_echoed(self, client: TestClient, two_short_orders):
        resp = client.post(
            f"{API}/plan",
            headers={"X-Request-ID": "req-123"},
            json={
                "work_order_ids": [two_short_orders[0].id],
                "start": _iso(DAY1),
                "end": _iso(DAY1 + timedelta(days=1)),
            },
        )
        assert resp.status_code == 201
        assert resp.headers["X-Request-ID"] == "req-123"


class TestValidateSlots:
    def _payload(self, db, orders, mill, second_start_h):
        op_a = operations_of(db, orders[0].id)[0]
        op_b = operations_of(db, orders[1].id)[0]
        return {
            "slots": [
                {
                    "id": 1,
                    "operation_id": op_a.id,
                    "machine_id": mill.id,
                    "start_time": _iso(DAY1),
                    "end_time": _iso(DAY1 + timedelta(hours=1)),
                },
                {
                    "id": 2,
                    "operation_id": op_b.id,
                    "machine_id": mill.id,
                    "start_time": _iso(DAY1 + timedelta(hours=second_start_h)),
                    "end_time": _iso(DAY1 + timedelta(hours=second_start_h + 1)),
                },
            ]
        }

    def test_clean_slot_set_is_valid(self, client: TestClient, db, two_short_orders, mill):
        resp = client.post(f"{API}/validate", json=self._payload(db, two_short_orders, mill, 1))
        assert resp.status_code == 200
        assert resp.json() == {"valid": True, "conflicts": []}

    def test_overlap_is_double_booking(self, client: TestClient, db, two_short_orders, mill):
        resp = client.post(f"{API}/validate", json=self._payload(db, two_short_orders, mill, 0.5))
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is False
        assert [c["kind"] for c in data["conflicts"]] == ["double_booking"]
        assert data["conflicts"][0]["slot_ids"] == [1, 2]

    def test_end_before_start_is_malformed(self, client: TestClient, db, two_short_orders, mill):
        payload = self._payload(db, two_short_orders, mill, 1)
        payload["slots"][0]["end_time"] = payload["slots"][0]["start_time"]
        resp = client.post(f"{API}/validate", json=payload)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "MALFORMED_SLOT"

    def test_unknown_machine_is_malformed(self, client: TestClient, db, two_short_orders, mill):
        payload = self._payload(db, two_short_orders, mill, 1)
        payload["slots"][1]["machine_id"] = 4242
        resp = client.post(f"{API}/validate", json=payload)
        assert resp.status_code == 400
        assert "machine 4242 not found" in resp.json()["error"]["message"]


class TestBulkUpdateSlots:
    def _planned_slots(self, client, orders):
        data = _plan(client, [wo.id for wo in orders]).json()
        return sorted(data["slots"], key=lambda s: s["start_time"])

    def test_strict_update_into_overlap_is_rejected(self, client: TestClient, two_short_orders):
        first, second = self._planned_slots(client, two_short_orders)
        assert _ts(second["start_time"]) == DAY1 + timedelta(hours=1)

        resp = client.post(
            f"{API}/slots/bulk-update",
            json={
                "updates": [{"slot_id": second["id"], "start_time": _iso(DAY1 + timedelta(minutes=30))}],
                "strict": True,
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["applied"] is False
        assert _ts(data["slots"][0]["start_time"]) == DAY1 + timedelta(hours=1)
        assert "double_booking" in [c["kind"] for c in data["conflicts"]]

        stored = client.get(f"{API}/slots").json()
        assert {_ts(s["start_time"]) for s in stored} == {DAY1, DAY1 + timedelta(hours=1)}

    def test_lenient_update_into_overlap_is_applied_with_conflicts(self, client: TestClient, two_short_orders):
        _, second = self._planned_slots(client, two_short_orders)

        resp = client.post(
            f"{API}/slots/bulk-update",
            json={
                "updates": [{"slot_id": second["id"], "start_time": _iso(DAY1 + timedelta(minutes=30))}],
                "strict": False,
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["applied"] is True
        moved = data["slots"][0]
        assert _ts(moved["start_time"]) == DAY1 + timedelta(minutes=30)
        assert _ts(moved["end_time"]) == DAY1 + timedelta(minutes=90)
        assert "double_booking" in [c["kind"] for c in data["conflicts"]]

    def test_clean_move_with_metadata(self, client: TestClient, two_short_orders):
        _, second = self._planned_slots(client, two_short_orders)

        resp = client.post(
            f"{API}/slots/bulk-update",
            json={
                "updates": [
                    {
                        "slot_id": second["id"],
                        "start_time": _iso(DAY1 + timedelta(hours=4)),
                        "assigned_operator": "j.doe",
                        "tags": ["rush"],
                    }
                ]
            },
        )
        data = resp.json()
        assert data["applied"] is True
        assert data["conflicts"] == []
        assert data["slots"][0]["assigned_operator"] == "j.doe"
        assert data["slots"][0]["tags"] == ["rush"]

    def test_end_time_must_match_duration_without_override(self, client: TestClient, two_short_orders):
        _, second = self._planned_slots(client, two_short_orders)
        change = {
            "slot_id": second["id"],
            "start_time": _iso(DAY1 + timedelta(hours=4)),
            "end_time": _iso(DAY1 + timedelta(hours=6)),
        }

        resp = client.post(f"{API}/slots/bulk-update", json={"updates": [change]})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "MALFORMED_SLOT"

        resp = client.post(
            f"{API}/slots/bulk-update",
            json={"updates": [{**change, "duration_override": True}]},
        )
        assert resp.status_code == 200
        slot = resp.json()["slots"][0]
        assert slot["duration_override"] is True
        assert _ts(slot["end_time"]) == DAY1 + timedelta(hours=6)

    def test_unknown_slot_is_404(self, client: TestClient, mill):
        resp = client.post(f"{API}/slots/bulk-update", json={"updates": [{"slot_id": 777}]})
        assert resp.status_code == 404

    def test_duplicate_slot_is_malformed(self, client: TestClient, two_short_orders):
        first, _ = self._planned_slots(client, two_short_orders)
        resp = client.post(
            f"{API}/slots/bulk-update",
            json={"updates": [{"slot_id": first["id"]}, {"slot_id": first["id"]}]},
        )
        assert resp.status_code == 400

    def test_retries_then_surfaces_concurrent_modification(self, db, client: TestClient, two_short_orders, mill, monkeypatch):
        first, _ = self._planned_slots(client, two_short_orders)
        calls = []

        def always_stale(self, expected):
            calls.append(dict(expected))
            return sorted(expected)

        monkeypatch.setattr(settings, "BULK_UPDATE_MAX_RETRIES", 2)
        monkeypatch.setattr(MachineScheduleStateRepository, "bump_versions", always_stale)

        body = BulkUpdateSlotsRequest(updates=[{"slot_id": first["id"], "start_time": DAY1 + timedelta(hours=3)}])
        with pytest.raises(ConcurrentModificationError) as exc:
            SchedulingService(db).bulk_update_slots(body)

        assert exc.value.machine_ids == [mill.id]
        assert len(calls) == 3
        # Nothing was committed and every lease was released.
        stored = {s["id"]: s for s in client.get(f"{API}/slots").json()}
        assert _ts(stored[first["id"]]["start_time"]) == DAY1
        assert MachineScheduleStateRepository(db).acquire_leases([mill.id], "another-writer", 30) == []


class TestCapacityAndSlots:
    def test_capacity_buckets_reflect_planned_minutes(self, client: TestClient, mill, make_work_order):
        wo = make_work_order([("MILLING", 300)])
        _plan(client, [wo.id])

        resp = client.get(
            f"{API}/capacity-buckets",
            params={
                "start": _iso(DAY1),
                "end": _iso(DAY1 + timedelta(days=2)),
                "granularity": "daily",
                "machine_id": [mill.id],
            },
        )
        assert resp.status_code == 200
        buckets = resp.json()
        assert len(buckets) == 2
        assert buckets[0]["available_minutes"] == 480
        assert buckets[0]["planned_minutes"] == 300
        assert buckets[0]["utilization"] == 0.625
        assert buckets[0]["is_overloaded"] is False
        assert buckets[1]["planned_minutes"] == 0

    def test_downtime_reduces_available_minutes(self, client: TestClient, mill, make_downtime):
        make_downtime(mill.id, DAY1 + timedelta(hours=1), DAY1 + timedelta(hours=3))
        resp = client.get(
            f"{API}/capacity-buckets",
            params={"start": _iso(DAY1), "end": _iso(DAY1 + timedelta(days=1)), "machine_id": [mill.id]},
        )
        assert resp.json()[0]["available_minutes"] == 360

    def test_shift_buckets(self, client: TestClient, make_machine):
        machine = make_machine("LATHE-1", operation_types=("TURNING",), calendar=None)
        start = DAY1 + timedelta(hours=6)
        resp = client.get(
            f"{API}/capacity-buckets",
            params={
                "start": _iso(start),
                "end": _iso(start + timedelta(days=1)),
                "granularity": "shift",
                "machine_id": [machine.id],
            },
        )
        buckets = resp.json()
        # Default calendar works Shift-A and Shift-B on weekdays.
        assert [b["shift"] for b in buckets] == ["Shift-A", "Shift-B", "Shift-C"]
        assert [b["available_minutes"] for b in buckets] == [480, 480, 0]

    def test_inverted_range_is_rejected(self, client: TestClient, mill):
        resp = client.get(
            f"{API}/capacity-buckets",
            params={"start": _iso(DAY1 + timedelta(days=1)), "end": _iso(DAY1)},
        )
        assert resp.status_code == 422

    def test_unknown_machine_is_404(self, client: TestClient, mill):
        resp = client.get(
            f"{API}/capacity-buckets",
            params={"start": _iso(DAY1), "end": _iso(DAY1 + timedelta(days=1)), "machine_id": [mill.id, 555]},
        )
        assert resp.status_code == 404

    def test_completing_the_only_slot_completes_the_work_order(self, client: TestClient, db, mill, make_work_order):
        wo = make_work_order([("MILLING", 60)])
        slot = _plan(client, [wo.id]).json()["slots"][0]

        resp = client.patch(f"{API}/slots/{slot['id']}/status", json={"status": "completed"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"

        db.expire_all()
        assert db.get(WorkOrder, wo.id).status == "completed"

        filtered = client.get(f"{API}/slots", params={"status": "completed", "work_order_id": wo.id}).json()
        assert [s["id"] for s in filtered] == [slot["id"]]

    def test_completed_operations_are_not_replanned(self, client: TestClient, mill, make_work_order):
        wo = make_work_order([("MILLING", 60), ("MILLING", 60)])
        slots = sorted(_plan(client, [wo.id]).json()["slots"], key=lambda s: s["start_time"])
        client.patch(f"{API}/slots/{slots[0]['id']}/status", json={"status": "completed"})

        replanned = _plan(client, [wo.id]).json()
        assert [s["operation_id"] for s in replanned["slots"]] == [slots[1]["operation_id"]]
        assert _ts(replanned["slots"][0]["start_time"]) >= _ts(slots[0]["end_time"])

    def test_unknown_slot_status_update_is_404(self, client: TestClient, mill):
        resp = client.patch(f"{API}/slots/31337/status", json={"status": "completed"})
        assert resp.status_code == 404


class TestTimezoneAwareInput:
    """Offset-carrying timestamps are read as UTC instants and stored naive."""

    def test_plan_accepts_utc_suffix(self, client: TestClient, two_short_orders):
        resp = client.post(
            f"{API}/plan",
            json={
                "work_order_ids": [wo.id for wo in two_short_orders],
                "start": _iso(DAY1) + "Z",
                "end": _iso(DAY1 + timedelta(days=3)) + "Z",
            },
        )
        assert resp.status_code == 201
        starts = sorted(_ts(s["start_time"]) for s in resp.json()["slots"])
        assert starts == [DAY1, DAY1 + timedelta(hours=1)]

    def test_plan_converts_offsets_to_utc(self, client: TestClient, two_short_orders):
        resp = client.post(
            f"{API}/plan",
            json={
                "work_order_ids": [two_short_orders[0].id],
                "start": _iso(DAY1 + timedelta(hours=2)) + "+02:00",
                "end": _iso(DAY1 + timedelta(days=1, hours=2)) + "+02:00",
            },
        )
        assert resp.status_code == 201
        [slot] = resp.json()["slots"]
        assert _ts(slot["start_time"]) == DAY1

    def test_validate_accepts_utc_suffix(self, client: TestClient, db, two_short_orders, mill):
        op = operations_of(db, two_short_orders[0].id)[0]
        resp = client.post(
            f"{API}/validate",
            json={
                "slots": [
                    {
                        "id": 1,
                        "operation_id": op.id,
                        "machine_id": mill.id,
                        "start_time": _iso(DAY1) + "Z",
                        "end_time": _iso(DAY1 + timedelta(hours=1)) + "Z",
                    }
                ]
            },
        )
        assert resp.status_code == 200
        assert resp.json() == {"valid": True, "conflicts": []}

    def test_bulk_update_accepts_utc_suffix(self, client: TestClient, two_short_orders):
        slots = sorted(_plan(client, [wo.id for wo in two_short_orders]).json()["slots"], key=lambda s: s["start_time"])

        resp = client.post(
            f"{API}/slots/bulk-update",
            json={"updates": [{"slot_id": slots[1]["id"], "start_time": _iso(DAY1 + timedelta(hours=4)) + "Z"}]},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["applied"] is True
        assert _ts(data["slots"][0]["start_time"]) == DAY1 + timedelta(hours=4)

    def test_capacity_buckets_accept_utc_suffix(self, client: TestClient, mill):
        resp = client.get(
            f"{API}/capacity-buckets",
            params={
                "start": _iso(DAY1) + "Z",
                "end": _iso(DAY1 + timedelta(days=1)) + "Z",
                "machine_id": [mill.id],
            },
        )
        assert resp.status_code == 200
        [bucket] = resp.json()
        assert bucket["available_minutes"] == 480
        assert _ts(bucket["window_start"]) == DAY1


class TestChangeover:
    @pytest.fixture
    def alu_to_steel(self, db):
        db.add(SetupMatrixEntry(machine_type="CNC", from_family="ALU", to_family="STEEL", changeover_minutes=45))
        db.commit()

    def test_plan_reserves_changeover_between_families(self, client: TestClient, mill, make_work_order, alu_to_steel):
        alu = make_work_order([("MILLING", 60, "ALU")], due_date=DAY1 + timedelta(days=1))
        steel = make_work_order([("MILLING", 60, "STEEL")], due_date=DAY1 + timedelta(days=2))

        resp = _plan(client, [alu.id, steel.id])
        assert resp.status_code == 201
        data = resp.json()
        assert data["conflicts"] == []

        slots = {s["work_order_id"]: s for s in data["slots"]}
        assert slots[alu.id]["setup_minutes"] == 0
        assert slots[steel.id]["setup_minutes"] == 45
        assert _ts(slots[steel.id]["start_time"]) == DAY1 + timedelta(minutes=105)
        assert _ts(slots[steel.id]["end_time"]) == DAY1 + timedelta(minutes=165)

        buckets = client.get(
            f"{API}/capacity-buckets",
            params={"start": _iso(DAY1), "end": _iso(DAY1 + timedelta(days=1)), "machine_id": [mill.id]},
        ).json()
        assert buckets[0]["planned_minutes"] == 165

    def test_operation_setup_applies_without_a_matrix_row(self, client: TestClient, mill, make_work_order):
        first = make_work_order([("MILLING", 60, "STEEL")], due_date=DAY1 + timedelta(days=1))
        second = make_work_order([("MILLING", 60, "ALU", 20)], due_date=DAY1 + timedelta(days=2))

        slots = {s["work_order_id"]: s for s in _plan(client, [first.id, second.id]).json()["slots"]}
        assert _ts(slots[second.id]["start_time"]) == DAY1 + timedelta(minutes=80)
        assert slots[second.id]["setup_minutes"] == 20

    def test_validate_flags_a_gap_shorter_than_the_changeover(
        self, client: TestClient, db, mill, make_work_order, alu_to_steel
    ):
        alu = operations_of(db, make_work_order([("MILLING", 60, "ALU")]).id)[0]
        steel = operations_of(db, make_work_order([("MILLING", 60, "STEEL")]).id)[0]

        resp = client.post(
            f"{API}/validate",
            json={
                "slots": [
                    {
                        "id": 1,
                        "operation_id": alu.id,
                        "machine_id": mill.id,
                        "start_time": _iso(DAY1),
                        "end_time": _iso(DAY1 + timedelta(hours=1)),
                    },
                    {
                        "id": 2,
                        "operation_id": steel.id,
                        "machine_id": mill.id,
                        "start_time": _iso(DAY1 + timedelta(minutes=80)),
                        "end_time": _iso(DAY1 + timedelta(minutes=140)),
                    },
                ]
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is False
        assert [(c["kind"], c["slot_ids"]) for c in data["conflicts"]] == [("double_booking", [1, 2])]
