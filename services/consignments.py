import logging
from datetime import date, timedelta

import db
from services import pallets, validation
from services.errors import InvalidInputError, NotFoundError
from services.normalize import extract_postcode, normalize_customer, normalize_destination

logger = logging.getLogger(__name__)


def _clean_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def prepare_consignment(raw):
    """Fill in matching keys and postcode for an incoming consignment record."""

    consignment = {column: raw.get(column) for column in db.CONSIGNMENT_COLUMNS}
    consignment["id"] = validation.require_identifier(raw.get("id"), "id")
    consignment["customer_name_raw"] = _clean_text(raw.get("customer_name_raw"))
    consignment["destination_raw"] = _clean_text(raw.get("destination_raw"))
    consignment["customer_key"] = normalize_customer(
        raw.get("customer_key") or consignment["customer_name_raw"]
    )
    consignment["destination_key"] = normalize_destination(
        raw.get("destination_key") or consignment["destination_raw"]
    )
    consignment["postcode"] = extract_postcode(
        raw.get("postcode") or consignment["destination_raw"]
    )
    consignment["pallets_from_site"] = validation.coerce_quantity(
        raw.get("pallets_from_site"), "pallets_from_site", integer=True, allow_none=True
    )
    consignment["weight_from_site"] = validation.coerce_quantity(
        raw.get("weight_from_site"), "weight_from_site", allow_none=True
    )
    return consignment


def ingest_consignments(rows):
    prepared = [prepare_consignment(row) for row in rows or []]
    return db.upsert_consignments(prepared)


def list_consignments(filters=None):
    items = db.list_consignments(filters)
    overrides = {
        item["id"]: {"pallets": item["pallet_override"]}
        for item in items
        if item.get("pallet_override") is not None
    }
    profiles = {profile["customer_key"]: profile for profile in db.list_customer_profiles()}
    resolver = pallets.PalletResolver(
        get_pallet_override=overrides.get,
        get_customer_profile=profiles.get,
        fallback_pallets=pallets.get_resolver().fallback_pallets,
    )
    for item in items:
        effective = resolver.resolve_for(item)
        item["effective_pallets"] = effective
        item["missing_pallets"] = pallets.is_missing_pallets(effective)
    return items


def list_unassigned(date_value=None):
    return list_consignments({"active": True, "unassigned": True, "date": date_value})


def _require_consignment(consignment_id):
    consignment_id = validation.require_identifier(consignment_id, "consignment_id")
    if not db.get_consignment(consignment_id):
        raise NotFoundError(f"Consignment {consignment_id} not found.")
    return consignment_id


def set_delivery_location(consignment_id, location_id):
    """Pin a consignment to a registry location; an empty ``location_id`` clears it."""

    consignment_id = _require_consignment(consignment_id)
    if location_id in (None, ""):
        location_id = None
    else:
        location_id = validation.require_int_id(location_id, "delivery_location_id")
        if not db.get_delivery_location(location_id):
            raise NotFoundError(f"Delivery location {location_id} not found.")
    db.update_consignment_delivery_location(consignment_id, location_id)
    logger.info("Consignment %s delivery location set to %s", consignment_id, location_id)
    return db.get_consignment(consignment_id)


def unarchive_consignment(consignment_id):
    consignment_id = _require_consignment(consignment_id)
    db.unarchive_consignment(consignment_id)
    return db.get_consignment(consignment_id)


def archive_old_consignments(before=None, older_than_days=0, today=None):
    """Archive unassigned consignments not seen since the cutoff date.

    The cutoff is ``before`` when given, otherwise ``older_than_days`` before
    today. Anything seen on the cutoff date itself stays active.
    """

    if before:
        try:
            cutoff = date.fromisoformat(str(before).strip())
        except ValueError:
            raise InvalidInputError(f"Invalid date: {before}. Use YYYY-MM-DD.")
    else:
        days = validation.coerce_quantity(
            older_than_days, "older_than_days", integer=True, allow_none=True
        ) or 0
        cutoff = (today or date.today()) - timedelta(days=days)
    archived = db.archive_stale_consignments(cutoff.isoformat())
    logger.info("Archived %s consignments last seen before %s", archived, cutoff.isoformat())
    return {"archived": archived, "cutoff": cutoff.isoformat()}
