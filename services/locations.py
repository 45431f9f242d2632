import db
from services import validation
from services.errors import NotFoundError
from services.normalize import normalize_destination, normalize_postcode

UNKNOWN_LOCATION_KEY = "unknown"


def _clean(value):
    if value is None:
        return ""
    return str(value).strip()


def location_key(consignment):
    """Grouping key: explicit delivery location, then destination key, then "unknown"."""

    location_id = consignment.get("delivery_location_id")
    if location_id not in (None, ""):
        return str(location_id)
    return _clean(consignment.get("destination_key")) or UNKNOWN_LOCATION_KEY


def _registry_names(locations):
    names = {}
    for location in locations or []:
        destination_key = _clean(location.get("destination_key"))
        if destination_key:
            names.setdefault(destination_key, location.get("display_name"))
    # Ids win over destination keys when both collide.
    for location in locations or []:
        names[str(location.get("id"))] = location.get("display_name")
    return names


def group_by_location(assignments, locations):
    """Group assignments by delivery location in order of first appearance."""

    names = _registry_names(locations)
    groups = {}
    for assignment in assignments or []:
        consignment = assignment.get("consignment") or {}
        groups.setdefault(location_key(consignment), []).append(assignment)

    result = []
    for key, grouped in groups.items():
        first = grouped[0].get("consignment") or {}
        location_name = (
            _clean(names.get(key))
            or _clean(first.get("destination_raw"))
            or key
        )
        result.append(
            {
                "location_id": key,
                "location_name": location_name,
                "assignments": grouped,
            }
        )
    return result


def _location_fields(form, partial=False):
    fields = {}
    errors = {}
    if not partial or "display_name" in form:
        display_name = _clean(form.get("display_name"))
        validation.validate_required(display_name, "display_name", errors)
        fields["display_name"] = display_name
    if not partial or "address" in form:
        fields["address"] = _clean(form.get("address")) or None
    if not partial or "notes" in form:
        fields["notes"] = _clean(form.get("notes")) or None
    if not partial or "postcode" in form:
        fields["postcode"] = normalize_postcode(form.get("postcode"))
    if not partial or "destination_key" in form:
        fields["destination_key"] = normalize_destination(form.get("destination_key"))
    validation.raise_for_errors(errors)
    return fields


def list_locations():
    return db.list_delivery_locations()


def create_location(form):
    location_id = db.create_delivery_location(_location_fields(form))
    return db.get_delivery_location(location_id)


def update_location(location_id, form):
    if not db.get_delivery_location(location_id):
        raise NotFoundError(f"Delivery location {location_id} not found.")
    db.update_delivery_location(location_id, _location_fields(form, partial=True))
    return db.get_delivery_location(location_id)


def delete_location(location_id):
    if not db.get_delivery_location(location_id):
        raise NotFoundError(f"Delivery location {location_id} not found.")
    db.delete_delivery_location(location_id)
