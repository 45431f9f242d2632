"""Per-lorry capacity accounting across two loading passes.

Run 1 holds assignments with ``is_reload`` false and Run 2 those with it
true. Each run is measured against the lorry's full declared capacity, as
the truck is emptied between passes. Nothing here is stored: every figure
is derived from the assignment list handed in.
"""

import json

import db
from services import config
from services.errors import InvalidInputError
from services.validation import coerce_quantity

RUN_1 = 1
RUN_2 = 2

BAND_NOMINAL = "nominal"
BAND_WARNING = "warning"
BAND_CRITICAL = "critical"

CAPACITY_BAND_THRESHOLDS_SETTING_KEY = "capacity_band_thresholds"
DEFAULT_CAPACITY_BAND_THRESHOLDS = {
    "warning": 70,
    "critical": 90,
}
SECOND_RUN_SUGGESTION_PCT = 80


def _coerce_pct(value, default):
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return float(default)
    if parsed != parsed:
        return float(default)
    return max(min(parsed, 100.0), 0.0)


def normalize_band_thresholds(raw_value):
    defaults = dict(DEFAULT_CAPACITY_BAND_THRESHOLDS)
    if not isinstance(raw_value, dict):
        return defaults
    warning = _coerce_pct(raw_value.get("warning"), defaults["warning"])
    critical = _coerce_pct(raw_value.get("critical"), defaults["critical"])
    if critical < warning:
        critical = warning
    return {"warning": warning, "critical": critical}


def get_capacity_band_thresholds():
    setting = db.get_planning_setting(CAPACITY_BAND_THRESHOLDS_SETTING_KEY) or {}
    raw_text = (setting.get("value_text") or "").strip()
    if not raw_text:
        return dict(DEFAULT_CAPACITY_BAND_THRESHOLDS)
    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError:
        parsed = None
    return normalize_band_thresholds(parsed)


def save_capacity_band_thresholds(values):
    if not isinstance(values, dict):
        raise InvalidInputError("Capacity thresholds must be an object.")
    warning = coerce_quantity(values.get("warning"), "warning")
    critical = coerce_quantity(values.get("critical"), "critical")
    if warning > 100 or critical > 100:
        raise InvalidInputError("Capacity thresholds must be between 0 and 100.")
    if critical < warning:
        raise InvalidInputError("Critical threshold cannot be below the warning threshold.")
    thresholds = {"warning": warning, "critical": critical}
    db.upsert_planning_setting(CAPACITY_BAND_THRESHOLDS_SETTING_KEY, json.dumps(thresholds))
    return thresholds


def capacity_pallets(lorry):
    try:
        declared = int(lorry.get("capacity_pallets") or 0)
    except (TypeError, ValueError):
        declared = 0
    return max(declared, 1)


def capacity_weight(lorry):
    declared = lorry.get("capacity_weight_kg")
    try:
        declared = float(declared) if declared is not None else None
    except (TypeError, ValueError):
        declared = None
    if declared is None or declared <= 0:
        return config.CAPACITY_WEIGHT_KG
    return declared


def raw_ratio(used, capacity):
    if not capacity or capacity <= 0:
        return 0.0
    return (used / capacity) * 100.0


def fill_ratio(used, capacity):
    """Percentage for display, clamped to 0..100. Overflow checks use raw values."""

    return max(0.0, min(100.0, raw_ratio(used, capacity)))


def capacity_band(percent, thresholds=None):
    thresholds = thresholds or DEFAULT_CAPACITY_BAND_THRESHOLDS
    if percent < thresholds["warning"]:
        return BAND_NOMINAL
    if percent <= thresholds["critical"]:
        return BAND_WARNING
    return BAND_CRITICAL


def run_for(is_reload):
    return RUN_2 if is_reload else RUN_1


def parse_run(value):
    if value in (None, ""):
        return RUN_1
    text = str(value).strip().lower().replace("run", "")
    if text in {"1", "primary"}:
        return RUN_1
    if text in {"2", "reload"}:
        return RUN_2
    raise InvalidInputError("Run must be 1 or 2.")


def run_assignments(assignments, run):
    reload_side = run == RUN_2
    return [a for a in assignments or [] if bool(a.get("is_reload")) == reload_side]


def _usage(assignments):
    used_pallets = sum(a.get("effective_pallets") or 0 for a in assignments)
    used_weight = sum(a.get("effective_weight") or 0 for a in assignments)
    return used_pallets, used_weight


def _run_state(assignments, cap_pallets, cap_weight, thresholds):
    used_pallets, used_weight = _usage(assignments)
    pallets_pct = raw_ratio(used_pallets, cap_pallets)
    weight_pct = raw_ratio(used_weight, cap_weight)
    return {
        "used_pallets": used_pallets,
        "used_weight": used_weight,
        "assignment_count": len(assignments),
        "pallets_pct": fill_ratio(used_pallets, cap_pallets),
        "weight_pct": fill_ratio(used_weight, cap_weight),
        "pallets_band": capacity_band(pallets_pct, thresholds),
        "weight_band": capacity_band(weight_pct, thresholds),
        "over_capacity": used_pallets > cap_pallets or used_weight > cap_weight,
    }


def current_state(lorry, assignments, thresholds=None):
    cap_pallets = capacity_pallets(lorry)
    cap_weight = capacity_weight(lorry)
    run1 = _run_state(run_assignments(assignments, RUN_1), cap_pallets, cap_weight, thresholds)
    run2 = _run_state(run_assignments(assignments, RUN_2), cap_pallets, cap_weight, thresholds)
    total_pallets = run1["used_pallets"] + run2["used_pallets"]
    return {
        "capacity_pallets": cap_pallets,
        "capacity_weight": cap_weight,
        "run1": run1,
        "run2": run2,
        "used_pallets": total_pallets,
        "used_weight": run1["used_weight"] + run2["used_weight"],
        "suggest_second_run": bool(assignments) and (
            raw_ratio(run1["used_pallets"], cap_pallets) >= SECOND_RUN_SUGGESTION_PCT
            or raw_ratio(run1["used_weight"], cap_weight) >= SECOND_RUN_SUGGESTION_PCT
        ),
        "suggest_backload": bool(assignments) and total_pallets > cap_pallets,
    }


def preview_add(
    lorry,
    assignments,
    candidate_pallets,
    candidate_weight=0,
    target_run=RUN_1,
    missing_pallets_fallback=None,
    thresholds=None,
):
    """Project the lorry's state if a job were dropped onto ``target_run``.

    Pure and non-committing. Zero or absent candidate pallets count as
    ``missing_pallets_fallback`` here only; stored figures are untouched.
    """

    if target_run not in (RUN_1, RUN_2):
        raise InvalidInputError("Run must be 1 or 2.")
    pallets = coerce_quantity(candidate_pallets, "pallets", allow_none=True)
    weight = coerce_quantity(candidate_weight, "weight", allow_none=True) or 0
    if missing_pallets_fallback is None:
        missing_pallets_fallback = config.MISSING_PALLETS_FALLBACK
    fallback = coerce_quantity(missing_pallets_fallback, "missing_pallets_fallback")
    counted_pallets = pallets if pallets else fallback

    cap_pallets = capacity_pallets(lorry)
    cap_weight = capacity_weight(lorry)
    used_pallets, used_weight = _usage(run_assignments(assignments, target_run))
    preview_pallets = used_pallets + counted_pallets
    preview_weight = used_weight + weight
    return {
        "target_run": target_run,
        "counted_pallets": counted_pallets,
        "preview_pallets": preview_pallets,
        "preview_weight": preview_weight,
        "preview_pallets_pct": fill_ratio(preview_pallets, cap_pallets),
        "preview_weight_pct": fill_ratio(preview_weight, cap_weight),
        "pallets_band": capacity_band(fill_ratio(preview_pallets, cap_pallets), thresholds),
        "weight_band": capacity_band(fill_ratio(preview_weight, cap_weight), thresholds),
        "would_exceed": preview_pallets > cap_pallets or preview_weight > cap_weight,
    }


def preview_move(
    lorry,
    assignments,
    moving_assignment,
    target_run=RUN_1,
    missing_pallets_fallback=None,
    thresholds=None,
):
    """Like ``preview_add`` for a job that is already on a lorry.

    The job's own load is removed from wherever it sits on this lorry
    before it is added to ``target_run``.
    """

    remaining = [a for a in assignments or [] if a.get("id") != moving_assignment.get("id")]
    return preview_add(
        lorry,
        remaining,
        moving_assignment.get("effective_pallets"),
        moving_assignment.get("effective_weight"),
        target_run=target_run,
        missing_pallets_fallback=missing_pallets_fallback,
        thresholds=thresholds,
    )
