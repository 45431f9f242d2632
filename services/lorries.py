import logging

import db
from services import assignments as assignment_service
from services import capacity, config, locations, pallets, validation
from services.errors import NotFoundError

logger = logging.getLogger(__name__)


def get_lorry_or_404(lorry_id):
    lorry = db.get_lorry(lorry_id)
    if not lorry:
        raise NotFoundError(f"Lorry {lorry_id} not found.")
    return lorry


def _lorry_fields(form, partial=False):
    fields = {}
    errors = {}
    if not partial or "name" in form:
        name = str(form.get("name") or "").strip()
        validation.validate_required(name, "name", errors)
        fields["name"] = name
    if not partial or "truck_class" in form:
        truck_class = str(form.get("truck_class") or "Class1").strip()
        validation.validate_choice(truck_class, "truck_class", validation.TRUCK_CLASSES, errors)
        fields["truck_class"] = truck_class
    if "capacity_pallets" in form:
        validation.validate_positive_int(form.get("capacity_pallets"), "capacity_pallets", errors)
        if "capacity_pallets" not in errors:
            fields["capacity_pallets"] = int(form["capacity_pallets"])
    elif not partial:
        fields["capacity_pallets"] = config.CAPACITY_PALLETS
    if form.get("capacity_weight_kg") not in (None, ""):
        validation.validate_positive_float(form.get("capacity_weight_kg"), "capacity_weight_kg", errors)
        if "capacity_weight_kg" not in errors:
            fields["capacity_weight_kg"] = float(form["capacity_weight_kg"])
    elif "capacity_weight_kg" in form:
        fields["capacity_weight_kg"] = None
    validation.raise_for_errors(errors)
    return fields


def create_lorry(form):
    lorry_id = db.create_lorry(_lorry_fields(form))
    logger.info("Created lorry %s", lorry_id)
    return db.get_lorry(lorry_id)


def update_lorry(lorry_id, form):
    get_lorry_or_404(lorry_id)
    db.update_lorry(lorry_id, _lorry_fields(form, partial=True))
    return db.get_lorry(lorry_id)


def update_lorry_status(lorry_id, status):
    get_lorry_or_404(lorry_id)
    errors = {}
    validation.validate_choice(status, "status", validation.LORRY_STATUSES, errors)
    validation.raise_for_errors(errors)
    db.update_lorry_status(lorry_id, status)
    return db.get_lorry(lorry_id)


def delete_lorry(lorry_id):
    get_lorry_or_404(lorry_id)
    db.delete_lorry(lorry_id)
    logger.info("Deleted lorry %s; its jobs returned to the unassigned pool", lorry_id)


def _decorate_assignment(assignment, transport_date):
    assignment["run"] = capacity.run_for(assignment["is_reload"])
    assignment["missing_pallets"] = pallets.is_missing_pallets(assignment["effective_pallets"])
    assignment["date_reload"] = assignment_service.is_date_reload(
        (assignment.get("consignment") or {}).get("eta_iso"), transport_date
    )
    assignment["display_reload"] = assignment_service.display_reload(assignment, transport_date)
    return assignment


def build_lorry_view(lorry, transport_date=None, delivery_locations=None, thresholds=None):
    if thresholds is None:
        thresholds = capacity.get_capacity_band_thresholds()
    if delivery_locations is None:
        delivery_locations = db.list_delivery_locations()
    lorry_assignments = [
        _decorate_assignment(assignment, transport_date)
        for assignment in db.list_assignments_for_lorry(lorry["id"])
    ]
    run1 = capacity.run_assignments(lorry_assignments, capacity.RUN_1)
    run2 = capacity.run_assignments(lorry_assignments, capacity.RUN_2)
    view = dict(lorry)
    view.update(
        {
            "assignments": lorry_assignments,
            "capacity": capacity.current_state(lorry, lorry_assignments, thresholds),
            "run1_groups": locations.group_by_location(run1, delivery_locations),
            "run2_groups": locations.group_by_location(run2, delivery_locations),
        }
    )
    return view


def build_board(transport_date=None):
    thresholds = capacity.get_capacity_band_thresholds()
    delivery_locations = db.list_delivery_locations()
    return [
        build_lorry_view(
            lorry,
            transport_date=transport_date,
            delivery_locations=delivery_locations,
            thresholds=thresholds,
        )
        for lorry in db.list_lorries()
    ]


def preview(lorry_id, payload):
    """Projection for a job hovering over a lorry; never writes."""

    lorry = get_lorry_or_404(lorry_id)
    lorry_assignments = db.list_assignments_for_lorry(lorry_id)
    target_run = capacity.parse_run(payload.get("run"))
    thresholds = capacity.get_capacity_band_thresholds()
    fallback = payload.get("missing_pallets_fallback")

    consignment_id = str(payload.get("consignment_id") or "").strip()
    moving = db.get_assignment_for_consignment(consignment_id) if consignment_id else None
    if moving:
        return capacity.preview_move(
            lorry,
            lorry_assignments,
            moving,
            target_run=target_run,
            missing_pallets_fallback=fallback,
            thresholds=thresholds,
        )

    candidate_pallets = payload.get("pallets")
    candidate_weight = payload.get("weight")
    if consignment_id and candidate_pallets is None:
        consignment = db.get_consignment(consignment_id)
        if not consignment:
            raise NotFoundError(f"Consignment {consignment_id} not found.")
        candidate_pallets = pallets.get_resolver().resolve_for(consignment)
        if candidate_weight is None:
            candidate_weight = consignment.get("weight_from_site")
    return capacity.preview_add(
        lorry,
        lorry_assignments,
        candidate_pallets,
        candidate_weight,
        target_run=target_run,
        missing_pallets_fallback=fallback,
        thresholds=thresholds,
    )
