import io
import logging
import os
from datetime import date

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

import db
from services import (
    assignments as assignment_service,
    capacity,
    consignments as consignment_service,
    customers as customer_service,
    locations as location_service,
    lorries as lorry_service,
    pallets,
    plan_export,
)
from services.errors import InvalidInputError, NotFoundError, PlanningError

logger = logging.getLogger(__name__)


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return bool(default)
    normalized = str(raw).strip().lower()
    if normalized in {"1", "true", "yes", "on", "y"}:
        return True
    if normalized in {"0", "false", "no", "off", "n"}:
        return False
    return bool(default)


def _coerce_iso_date(raw_value):
    text = (raw_value or "").strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        raise InvalidInputError(f"Invalid date: {text}. Use YYYY-MM-DD.")


app = Flask(__name__)
app.json.sort_keys = False

db.init_db()


@app.errorhandler(PlanningError)
def handle_planning_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@app.errorhandler(Exception)
def handle_unexpected_error(exc):
    if isinstance(exc, HTTPException):
        return exc
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"ok": False, "error": "Unexpected server error.", "code": "server_error"}), 500


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInputError("Request body must be a JSON object.")
    return data


def _truthy(value):
    return str(value or "").strip().lower() in {"1", "true", "yes", "on", "y"}


def _flag(name):
    return _truthy(request.args.get(name))


# ---------------------------------------------------------------------------
# Consignments and pallets
# ---------------------------------------------------------------------------


@app.route("/api/consignments")
def list_consignments():
    filters = {
        "active": _flag("active"),
        "archived": _flag("archived"),
        "unassigned": _flag("unassigned"),
        "search": (request.args.get("search") or "").strip(),
        "date": _coerce_iso_date(request.args.get("date")),
    }
    return jsonify({"items": consignment_service.list_consignments(filters)})


@app.route("/api/consignments/<consignment_id>/pallets")
def consignment_pallets(consignment_id):
    consignment = db.get_consignment(consignment_id)
    if not consignment:
        raise NotFoundError(f"Consignment {consignment_id} not found.")
    effective = pallets.get_resolver().resolve_for(consignment)
    return jsonify(
        {
            "consignment_id": consignment_id,
            "effective_pallets": effective,
            "missing_pallets": pallets.is_missing_pallets(effective),
        }
    )


@app.route("/api/consignments/<consignment_id>/delivery-location", methods=["PATCH"])
def set_consignment_delivery_location(consignment_id):
    data = _json_body()
    consignment = consignment_service.set_delivery_location(
        consignment_id, data.get("delivery_location_id")
    )
    return jsonify({"ok": True, "consignment": consignment})


@app.route("/api/consignments/<consignment_id>/unarchive", methods=["PATCH"])
def unarchive_consignment(consignment_id):
    consignment = consignment_service.unarchive_consignment(consignment_id)
    return jsonify({"ok": True, "consignment": consignment})


@app.route("/api/consignments/archive-old", methods=["POST"])
def archive_old_consignments():
    data = _json_body()
    result = consignment_service.archive_old_consignments(
        before=data.get("before"),
        older_than_days=data.get("older_than_days"),
    )
    return jsonify({"ok": True, **result})


@app.route("/api/pallet-overrides", methods=["POST"])
def save_pallet_override():
    data = _json_body()
    result = pallets.set_pallet_override(data.get("consignment_id"), data.get("pallets"))
    return jsonify({"ok": True, **result})


@app.route("/api/pallet-overrides/<consignment_id>", methods=["DELETE"])
def remove_pallet_override(consignment_id):
    result = pallets.clear_pallet_override(consignment_id)
    return jsonify({"ok": True, **result})


@app.route("/api/customer-profiles")
def list_customer_profiles():
    return jsonify({"profiles": customer_service.list_customer_profiles()})


@app.route("/api/customer-profiles", methods=["POST"])
def save_customer_profile():
    profile = customer_service.save_customer_profile(_json_body())
    return jsonify({"ok": True, "profile": profile})


# ---------------------------------------------------------------------------
# Lorries
# ---------------------------------------------------------------------------


@app.route("/api/lorries")
def list_lorries():
    transport_date = _coerce_iso_date(request.args.get("date")) or date.today().isoformat()
    return jsonify(
        {
            "transport_date": transport_date,
            "lorries": lorry_service.build_board(transport_date),
        }
    )


@app.route("/api/lorries", methods=["POST"])
def create_lorry():
    lorry = lorry_service.create_lorry(_json_body())
    return jsonify(lorry), 201


@app.route("/api/lorries/<int:lorry_id>", methods=["PATCH"])
def update_lorry(lorry_id):
    return jsonify(lorry_service.update_lorry(lorry_id, _json_body()))


@app.route("/api/lorries/<int:lorry_id>/status", methods=["PATCH"])
def update_lorry_status(lorry_id):
    status = str(_json_body().get("status") or "").strip().lower()
    return jsonify(lorry_service.update_lorry_status(lorry_id, status))


@app.route("/api/lorries/<int:lorry_id>", methods=["DELETE"])
def delete_lorry(lorry_id):
    lorry_service.delete_lorry(lorry_id)
    return Response(status=204)


@app.route("/api/lorries/<int:lorry_id>/preview", methods=["POST"])
def preview_lorry_drop(lorry_id):
    return jsonify(lorry_service.preview(lorry_id, _json_body()))


@app.route("/api/lorries/<int:lorry_id>/mark-reload", methods=["POST"])
def mark_lorry_reload(lorry_id):
    updated = assignment_service.mark_all_as_reload(lorry_id)
    return jsonify({"ok": True, "assignments": updated})


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@app.route("/api/assignments/assign", methods=["POST"])
def assign_consignment():
    data = _json_body()
    assignment = assignment_service.assign(
        data.get("consignment_id"),
        data.get("lorry_id"),
        index=data.get("index"),
        is_reload=data.get("is_reload", False),
    )
    return jsonify({"ok": True, "assignment": assignment})


@app.route("/api/assignments/unassign", methods=["POST"])
def unassign_consignment():
    data = _json_body()
    assignment_service.unassign(data.get("consignment_id"))
    return jsonify({"ok": True})


@app.route("/api/assignments/move", methods=["POST"])
def move_consignment():
    data = _json_body()
    assignment = assignment_service.move(
        data.get("consignment_id"),
        data.get("lorry_id"),
        index=data.get("index"),
        is_reload=data.get("is_reload", False),
    )
    return jsonify({"ok": True, "assignment": assignment})


@app.route("/api/assignments/reorder", methods=["POST"])
def reorder_assignments():
    data = _json_body()
    updated = assignment_service.reorder(
        data.get("lorry_id"),
        data.get("ordered_consignment_ids"),
    )
    return jsonify({"ok": True, "assignments": updated})


@app.route("/api/assignments/<int:assignment_id>/reload", methods=["POST"])
def set_assignment_reload(assignment_id):
    data = _json_body()
    if "is_reload" not in data:
        raise InvalidInputError("is_reload is required.")
    assignment = assignment_service.set_reload_flag(assignment_id, data["is_reload"])
    return jsonify({"ok": True, "assignment": assignment})


# ---------------------------------------------------------------------------
# Delivery locations and settings
# ---------------------------------------------------------------------------


@app.route("/api/delivery-locations")
def list_delivery_locations():
    return jsonify({"ok": True, "locations": location_service.list_locations()})


@app.route("/api/delivery-locations", methods=["POST"])
def create_delivery_location():
    location = location_service.create_location(_json_body())
    return jsonify({"ok": True, "location": location}), 201


@app.route("/api/delivery-locations/<int:location_id>", methods=["PATCH"])
def update_delivery_location(location_id):
    location = location_service.update_location(location_id, _json_body())
    return jsonify({"ok": True, "location": location})


@app.route("/api/delivery-locations/<int:location_id>", methods=["DELETE"])
def delete_delivery_location(location_id):
    location_service.delete_location(location_id)
    return Response(status=204)


@app.route("/api/settings/capacity-bands")
def get_capacity_bands():
    return jsonify(capacity.get_capacity_band_thresholds())


@app.route("/api/settings/capacity-bands", methods=["POST"])
def save_capacity_bands():
    return jsonify(capacity.save_capacity_band_thresholds(_json_body()))


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


@app.route("/plan/export.xlsx")
def export_plan():
    transport_date = _coerce_iso_date(request.args.get("date")) or date.today().isoformat()
    board = lorry_service.build_board(transport_date)
    workbook = plan_export.build_plan_workbook(board, transport_date=transport_date)
    output = io.BytesIO()
    workbook.save(output)
    output.seek(0)
    filename = f"lorry_plan_{transport_date}.xlsx"
    return Response(
        output.getvalue(),
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


if __name__ == "__main__":
    app.run(debug=_env_bool("FLASK_DEBUG", default=False))
