import json
import unittest

import pytest

import db
from services import capacity
from services.errors import InvalidInputError


def _job(job_id, pallets, weight=0, is_reload=False):
    return {
        "id": job_id,
        "effective_pallets": pallets,
        "effective_weight": weight,
        "is_reload": is_reload,
    }


class CurrentStateTests(unittest.TestCase):
    def test_runs_are_accounted_independently(self):
        lorry = {"capacity_pallets": 26, "capacity_weight_kg": 10000}
        jobs = [
            _job(1, 10, 2000),
            _job(2, 14, 3000),
            _job(3, 5, 1500, is_reload=True),
        ]

        state = capacity.current_state(lorry, jobs)

        self.assertEqual(state["run1"]["used_pallets"], 24)
        self.assertEqual(state["run1"]["used_weight"], 5000)
        self.assertEqual(state["run2"]["used_pallets"], 5)
        self.assertEqual(state["run2"]["used_weight"], 1500)
        self.assertEqual(state["capacity_pallets"], 26)
        self.assertEqual(state["capacity_weight"], 10000)
        self.assertEqual(state["used_pallets"], 29)
        self.assertFalse(state["run1"]["over_capacity"])
        self.assertTrue(state["suggest_second_run"])
        self.assertTrue(state["suggest_backload"])

    def test_defaults_for_undeclared_capacity(self):
        state = capacity.current_state({"capacity_pallets": 0, "capacity_weight_kg": None}, [])
        self.assertEqual(state["capacity_pallets"], 1)
        self.assertEqual(state["capacity_weight"], 24000)
        self.assertFalse(state["suggest_second_run"])
        self.assertFalse(state["suggest_backload"])

    def test_missing_pallets_count_as_zero_in_committed_state(self):
        state = capacity.current_state({"capacity_pallets": 26}, [_job(1, 0), _job(2, None)])
        self.assertEqual(state["run1"]["used_pallets"], 0)

    def test_over_capacity_on_weight_alone(self):
        lorry = {"capacity_pallets": 26, "capacity_weight_kg": 1000}
        state = capacity.current_state(lorry, [_job(1, 2, 1200)])
        self.assertTrue(state["run1"]["over_capacity"])
        self.assertEqual(state["run1"]["weight_pct"], 100.0)
        self.assertEqual(state["run1"]["weight_band"], capacity.BAND_CRITICAL)


class PreviewAddTests(unittest.TestCase):
    lorry = {"capacity_pallets": 26}

    def test_full_run_one_overflows_but_empty_run_two_does_not(self):
        jobs = [_job(1, 20), _job(2, 4)]

        run1 = capacity.preview_add(self.lorry, jobs, 3, 0, target_run=capacity.RUN_1)
        run2 = capacity.preview_add(self.lorry, jobs, 3, 0, target_run=capacity.RUN_2)

        self.assertEqual(run1["preview_pallets"], 27)
        self.assertTrue(run1["would_exceed"])
        self.assertEqual(run2["preview_pallets"], 3)
        self.assertFalse(run2["would_exceed"])

    def test_weight_alone_is_enough_to_exceed(self):
        lorry = {"capacity_pallets": 26, "capacity_weight_kg": 5000}
        preview = capacity.preview_add(lorry, [_job(1, 2, 4900)], 1, 200)
        self.assertEqual(preview["preview_pallets"], 3)
        self.assertTrue(preview["would_exceed"])

    def test_exactly_full_is_not_overflow(self):
        preview = capacity.preview_add(self.lorry, [_job(1, 23)], 3, 0)
        self.assertEqual(preview["preview_pallets_pct"], 100.0)
        self.assertFalse(preview["would_exceed"])

    def test_display_percent_is_clamped_but_overflow_uses_raw_values(self):
        preview = capacity.preview_add(self.lorry, [_job(1, 26)], 10, 0)
        self.assertEqual(preview["preview_pallets_pct"], 100.0)
        self.assertEqual(preview["preview_pallets"], 36)
        self.assertTrue(preview["would_exceed"])

    def test_missing_candidate_pallets_use_fallback_for_projection_only(self):
        jobs = [_job(1, 25)]
        preview = capacity.preview_add(self.lorry, jobs, 0, 0, missing_pallets_fallback=2)
        self.assertEqual(preview["counted_pallets"], 2)
        self.assertTrue(preview["would_exceed"])

        preview = capacity.preview_add(self.lorry, jobs, None, None)
        self.assertEqual(preview["counted_pallets"], 1)
        self.assertFalse(preview["would_exceed"])
        self.assertEqual(jobs[0]["effective_pallets"], 25)

    def test_preview_does_not_mutate_input(self):
        jobs = [_job(1, 5)]
        capacity.preview_add(self.lorry, jobs, 3, 10)
        self.assertEqual(jobs, [_job(1, 5)])

    def test_rejects_negative_or_non_finite_candidates(self):
        with self.assertRaises(InvalidInputError):
            capacity.preview_add(self.lorry, [], -1, 0)
        with self.assertRaises(InvalidInputError):
            capacity.preview_add(self.lorry, [], 1, float("inf"))
        with self.assertRaises(InvalidInputError):
            capacity.preview_add(self.lorry, [], 1, 0, target_run=3)

    def test_preview_move_excludes_the_job_from_its_current_run(self):
        jobs = [_job(1, 20), _job(2, 6)]
        same_run = capacity.preview_move(self.lorry, jobs, jobs[1], target_run=capacity.RUN_1)
        self.assertEqual(same_run["preview_pallets"], 26)
        self.assertFalse(same_run["would_exceed"])

        to_reload = capacity.preview_move(self.lorry, jobs, jobs[0], target_run=capacity.RUN_2)
        self.assertEqual(to_reload["preview_pallets"], 20)


class BandTests(unittest.TestCase):
    def test_default_band_edges(self):
        self.assertEqual(capacity.capacity_band(69.9), capacity.BAND_NOMINAL)
        self.assertEqual(capacity.capacity_band(70), capacity.BAND_WARNING)
        self.assertEqual(capacity.capacity_band(90), capacity.BAND_WARNING)
        self.assertEqual(capacity.capacity_band(90.1), capacity.BAND_CRITICAL)

    def test_custom_thresholds(self):
        thresholds = {"warning": 50, "critical": 60}
        self.assertEqual(capacity.capacity_band(55, thresholds), capacity.BAND_WARNING)
        self.assertEqual(capacity.capacity_band(61, thresholds), capacity.BAND_CRITICAL)

    def test_fill_ratio_clamps(self):
        self.assertEqual(capacity.fill_ratio(30, 26), 100.0)
        self.assertEqual(capacity.fill_ratio(-5, 26), 0.0)
        self.assertEqual(capacity.fill_ratio(5, 0), 0.0)
        self.assertAlmostEqual(capacity.raw_ratio(39, 26), 150.0)

    def test_normalize_thresholds_keeps_ladder(self):
        self.assertEqual(
            capacity.normalize_band_thresholds({"warning": 95, "critical": 80}),
            {"warning": 95.0, "critical": 95.0},
        )
        self.assertEqual(
            capacity.normalize_band_thresholds("junk"),
            capacity.DEFAULT_CAPACITY_BAND_THRESHOLDS,
        )

    def test_parse_run(self):
        self.assertEqual(capacity.parse_run(None), capacity.RUN_1)
        self.assertEqual(capacity.parse_run("2"), capacity.RUN_2)
        self.assertEqual(capacity.parse_run("run2"), capacity.RUN_2)
        with self.assertRaises(InvalidInputError):
            capacity.parse_run("third")


def test_thresholds_round_trip_through_planning_settings():
    assert capacity.get_capacity_band_thresholds() == capacity.DEFAULT_CAPACITY_BAND_THRESHOLDS

    capacity.save_capacity_band_thresholds({"warning": 60, "critical": 85})
    assert capacity.get_capacity_band_thresholds() == {"warning": 60.0, "critical": 85.0}

    db.upsert_planning_setting(capacity.CAPACITY_BAND_THRESHOLDS_SETTING_KEY, "{not json")
    assert capacity.get_capacity_band_thresholds() == capacity.DEFAULT_CAPACITY_BAND_THRESHOLDS

    db.upsert_planning_setting(
        capacity.CAPACITY_BAND_THRESHOLDS_SETTING_KEY, json.dumps({"warning": 40})
    )
    assert capacity.get_capacity_band_thresholds() == {"warning": 40.0, "critical": 90.0}


def test_save_thresholds_rejects_inverted_ladder():
    with pytest.raises(InvalidInputError):
        capacity.save_capacity_band_thresholds({"warning": 90, "critical": 70})
    assert capacity.get_capacity_band_thresholds() == capacity.DEFAULT_CAPACITY_BAND_THRESHOLDS
