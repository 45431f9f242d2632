import threading

import pytest

import db
from services import assignments
from services.errors import ConflictError, InvalidInputError, NotFoundError


def _order(lorry_id, is_reload=None):
    rows = db.list_assignments_for_lorry(lorry_id)
    if is_reload is not None:
        rows = [row for row in rows if row["is_reload"] == is_reload]
    return [row["consignment_id"] for row in rows]


def _positions(lorry_id):
    return [row["sort_order"] for row in db.list_assignments_for_lorry(lorry_id)]


@pytest.fixture
def lorry_with_jobs(planning_data):
    for job_id in ("A", "B", "C"):
        planning_data.consignment(job_id, pallets_from_site=2, weight_from_site=100)
    lorry = planning_data.lorry()
    for job_id in ("A", "B", "C"):
        assignments.assign(job_id, lorry["id"])
    return lorry


def test_assign_appends_to_run_one_with_resolved_quantities(lorry_with_jobs):
    lorry_id = lorry_with_jobs["id"]
    assert _order(lorry_id) == ["A", "B", "C"]
    assert _positions(lorry_id) == [0, 1, 2]
    row = db.get_assignment_for_consignment("B")
    assert row["is_reload"] is False
    assert row["effective_pallets"] == 2
    assert row["effective_weight"] == 100


def test_assign_same_consignment_to_second_lorry_conflicts(planning_data):
    planning_data.consignment("X")
    lorry1 = planning_data.lorry("Lorry 1")
    lorry2 = planning_data.lorry("Lorry 2")
    assignments.assign("X", lorry1["id"])

    with pytest.raises(ConflictError) as excinfo:
        assignments.assign("X", lorry2["id"])

    assert excinfo.value.details["lorry_id"] == lorry1["id"]
    assert _order(lorry1["id"]) == ["X"]
    assert _order(lorry2["id"]) == []

    assignments.unassign("X")
    assignments.assign("X", lorry2["id"])
    assert _order(lorry2["id"]) == ["X"]


def test_assign_unknown_references(planning_data):
    planning_data.consignment("X")
    lorry = planning_data.lorry()
    with pytest.raises(NotFoundError):
        assignments.assign("ghost", lorry["id"])
    with pytest.raises(NotFoundError):
        assignments.assign("X", 999)
    with pytest.raises(InvalidInputError):
        assignments.assign("X", "not-a-number")
    with pytest.raises(InvalidInputError):
        assignments.assign("X", "\u00b2")
    with pytest.raises(InvalidInputError):
        assignments.assign("", lorry["id"])


def test_assign_at_index_within_run(lorry_with_jobs, planning_data):
    planning_data.consignment("D")
    assignments.assign("D", lorry_with_jobs["id"], index=1)
    assert _order(lorry_with_jobs["id"]) == ["A", "D", "B", "C"]


def test_assign_in_second_run_mode(lorry_with_jobs, planning_data):
    planning_data.consignment("R")
    planning_data.consignment("S")
    lorry_id = lorry_with_jobs["id"]
    assignments.assign("R", lorry_id, is_reload=True)
    assignments.assign("S", lorry_id, index=0, is_reload=True)
    assert _order(lorry_id, is_reload=False) == ["A", "B", "C"]
    assert _order(lorry_id, is_reload=True) == ["S", "R"]


def test_unassign_returns_job_to_pool(lorry_with_jobs):
    assignments.unassign("B")
    assert _order(lorry_with_jobs["id"]) == ["A", "C"]
    assert db.get_assignment_for_consignment("B") is None
    with pytest.raises(NotFoundError):
        assignments.unassign("B")


def test_reorder_replaces_relative_order(lorry_with_jobs):
    lorry_id = lorry_with_jobs["id"]
    updated = assignments.reorder(lorry_id, ["C", "A", "B"])
    assert [row["consignment_id"] for row in updated] == ["C", "A", "B"]
    assert _order(lorry_id) == ["C", "A", "B"]


@pytest.mark.parametrize(
    "ordered_ids",
    [["C", "A"], ["C", "A", "B", "Z"], ["C", "A", "Z"]],
)
def test_reorder_with_mismatched_ids_conflicts_and_leaves_order(lorry_with_jobs, ordered_ids):
    lorry_id = lorry_with_jobs["id"]
    with pytest.raises(ConflictError):
        assignments.reorder(lorry_id, ordered_ids)
    assert _order(lorry_id) == ["A", "B", "C"]


def test_reorder_rejects_duplicates_and_unknown_lorry(lorry_with_jobs):
    with pytest.raises(InvalidInputError):
        assignments.reorder(lorry_with_jobs["id"], ["A", "A", "B"])
    with pytest.raises(InvalidInputError):
        assignments.reorder(lorry_with_jobs["id"], "A,B,C")
    with pytest.raises(NotFoundError):
        assignments.reorder(999, [])
    assert _order(lorry_with_jobs["id"]) == ["A", "B", "C"]


def test_set_reload_flag_moves_to_end_of_other_run(lorry_with_jobs):
    lorry_id = lorry_with_jobs["id"]
    assignments.set_reload_flag(db.get_assignment_for_consignment("C")["id"], True)
    assignments.set_reload_flag(db.get_assignment_for_consignment("A")["id"], True)
    assert _order(lorry_id, is_reload=False) == ["B"]
    assert _order(lorry_id, is_reload=True) == ["C", "A"]

    assignments.set_reload_flag(db.get_assignment_for_consignment("C")["id"], False)
    assert _order(lorry_id, is_reload=False) == ["B", "C"]
    assert _order(lorry_id, is_reload=True) == ["A"]
    assert len(set(_positions(lorry_id))) == 3


def test_set_reload_flag_unchanged_is_a_no_op(lorry_with_jobs):
    assignment_id = db.get_assignment_for_consignment("A")["id"]
    assignments.set_reload_flag(assignment_id, False)
    assert _order(lorry_with_jobs["id"]) == ["A", "B", "C"]
    with pytest.raises(NotFoundError):
        assignments.set_reload_flag(999, True)


def test_mark_all_as_reload_unions_with_existing_run_two(lorry_with_jobs, planning_data):
    lorry_id = lorry_with_jobs["id"]
    planning_data.consignment("R")
    assignments.assign("R", lorry_id, is_reload=True)

    assignments.mark_all_as_reload(lorry_id)

    assert _order(lorry_id, is_reload=False) == []
    assert _order(lorry_id, is_reload=True) == ["R", "A", "B", "C"]
    assert _positions(lorry_id) == [0, 1, 2, 3]
    with pytest.raises(NotFoundError):
        assignments.mark_all_as_reload(999)


def test_move_between_lorries_keeps_quantities(lorry_with_jobs, planning_data):
    other = planning_data.lorry("Lorry 2")
    pallets_before = db.get_assignment_for_consignment("B")["effective_pallets"]

    moved = assignments.move("B", other["id"], is_reload=True)

    assert moved["lorry_id"] == other["id"]
    assert moved["is_reload"] is True
    assert moved["effective_pallets"] == pallets_before
    assert _order(lorry_with_jobs["id"]) == ["A", "C"]
    assert _order(other["id"]) == ["B"]
    with pytest.raises(NotFoundError):
        assignments.move("ghost", other["id"])


def test_move_within_lorry_repositions(lorry_with_jobs):
    assignments.move("C", lorry_with_jobs["id"], index=0)
    assert _order(lorry_with_jobs["id"]) == ["C", "A", "B"]


def test_failed_move_to_missing_lorry_keeps_assignment(lorry_with_jobs):
    with pytest.raises(NotFoundError):
        assignments.move("A", 999)
    assert db.get_assignment_for_consignment("A")["lorry_id"] == lorry_with_jobs["id"]


def test_date_reload_is_display_only():
    assert assignments.is_date_reload("2026-03-01T08:00:00Z", "2026-03-02") is True
    assert assignments.is_date_reload("2026-03-02T08:00:00Z", "2026-03-02") is False
    assert assignments.is_date_reload(None, "2026-03-02") is False
    assert assignments.is_date_reload("2026-03-01", "") is False

    job = {"is_reload": False, "consignment": {"eta_iso": "2026-03-01"}}
    assert assignments.display_reload(job, "2026-03-02") is True
    assert job["is_reload"] is False


def test_unique_index_rejects_assign_that_slipped_past_the_check(planning_data, monkeypatch):
    planning_data.consignment("X")
    lorry1 = planning_data.lorry("Lorry 1")
    lorry2 = planning_data.lorry("Lorry 2")
    assignments.assign("X", lorry1["id"])
    lookup = db.get_assignment_for_consignment

    monkeypatch.setattr(db, "get_assignment_for_consignment", lambda *args, **kwargs: None)
    with pytest.raises(ConflictError):
        assignments.assign("X", lorry2["id"])
    monkeypatch.setattr(db, "get_assignment_for_consignment", lookup)

    assert _order(lorry1["id"]) == ["X"]
    assert _order(lorry2["id"]) == []
    assert db.get_assignment_for_consignment("X")["lorry_id"] == lorry1["id"]


def test_concurrent_assigns_of_one_consignment_let_only_one_win(planning_data):
    planning_data.consignment("X")
    lorries = [planning_data.lorry("Lorry 1")["id"], planning_data.lorry("Lorry 2")["id"]]
    barrier = threading.Barrier(len(lorries))
    outcomes = []

    def attempt(lorry_id):
        barrier.wait()
        try:
            assignments.assign("X", lorry_id)
        except ConflictError:
            outcomes.append("conflict")
        else:
            outcomes.append("ok")

    workers = [threading.Thread(target=attempt, args=(lorry_id,)) for lorry_id in lorries]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=30)

    assert sorted(outcomes) == ["conflict", "ok"]
    placed = [_order(lorry_id) for lorry_id in lorries]
    assert sorted(placed) == [[], ["X"]]
