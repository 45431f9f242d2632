"""Placement of consignments onto lorries.

Every mutation runs in one ``db.transaction()`` so the "already assigned"
check and the write land together, and a rejected request leaves the
stored order untouched. Positions are kept as one sequence per lorry;
Run 1 and Run 2 are read back by partitioning on ``is_reload``.
"""

import logging
import sqlite3

import db
from services import pallets
from services.errors import ConflictError, InvalidInputError, NotFoundError
from services.validation import coerce_bool, require_identifier, require_int_id

logger = logging.getLogger(__name__)


def _require_lorry(connection, lorry_id):
    lorry = db.get_lorry(lorry_id, connection=connection)
    if not lorry:
        raise NotFoundError(f"Lorry {lorry_id} not found.")
    return lorry


def _require_assignment(connection, consignment_id):
    assignment = db.get_assignment_for_consignment(consignment_id, connection=connection)
    if not assignment:
        raise NotFoundError(f"Consignment {consignment_id} is not assigned.")
    return assignment


def _coerce_index(index):
    if index is None or index == "":
        return None
    try:
        parsed = int(index)
    except (TypeError, ValueError):
        raise InvalidInputError("Index must be a whole number.")
    if parsed < 0:
        raise InvalidInputError("Index cannot be negative.")
    return parsed


def _write_positions(connection, ordered):
    db.update_assignment_positions(
        connection,
        [(a["id"], position, a["is_reload"]) for position, a in enumerate(ordered)],
    )


def _insert_position(ordered, is_reload, index):
    """Where a new job lands in the lorry sequence for a run-relative index."""

    same_run = [pos for pos, a in enumerate(ordered) if bool(a["is_reload"]) == is_reload]
    if index is None or index >= len(same_run):
        return len(ordered)
    return same_run[index]


def _place(connection, lorry_id, consignment_id, effective_pallets, effective_weight, is_reload, index):
    ordered = db.list_assignments_for_lorry(lorry_id, connection=connection)
    try:
        assignment_id = db.insert_assignment(
            connection,
            {
                "lorry_id": lorry_id,
                "consignment_id": consignment_id,
                "sort_order": len(ordered),
                "effective_pallets": effective_pallets,
                "effective_weight": effective_weight,
                "is_reload": is_reload,
            },
        )
    except sqlite3.IntegrityError:
        raise ConflictError(
            f"Consignment {consignment_id} was just assigned elsewhere. Refresh and try again."
        )
    placed = {"id": assignment_id, "is_reload": is_reload}
    ordered.insert(_insert_position(ordered, is_reload, index), placed)
    _write_positions(connection, ordered)
    return assignment_id


def assign(consignment_id, lorry_id, index=None, is_reload=False):
    """Put an unassigned consignment on a lorry, at the end of the run by default."""

    consignment_id = require_identifier(consignment_id, "consignment_id")
    lorry_id = require_int_id(lorry_id, "lorry_id")
    index = _coerce_index(index)
    is_reload = coerce_bool(is_reload)

    with db.transaction() as connection:
        consignment = db.get_consignment(consignment_id, connection=connection)
        if not consignment:
            raise NotFoundError(f"Consignment {consignment_id} not found.")
        _require_lorry(connection, lorry_id)
        existing = db.get_assignment_for_consignment(consignment_id, connection=connection)
        if existing:
            logger.warning(
                "Rejected assign of %s to lorry %s: already on lorry %s",
                consignment_id,
                lorry_id,
                existing["lorry_id"],
            )
            raise ConflictError(
                f"Consignment {consignment_id} is already assigned. Refresh and try again.",
                lorry_id=existing["lorry_id"],
            )
        effective_pallets = pallets.resolver_for_connection(connection).resolve_for(consignment)
        assignment_id = _place(
            connection,
            lorry_id,
            consignment_id,
            effective_pallets,
            consignment.get("weight_from_site"),
            is_reload,
            index,
        )
        assignment = db.get_assignment(assignment_id, connection=connection)

    logger.info(
        "Assigned %s to lorry %s (run %s, %s pallets)",
        consignment_id,
        lorry_id,
        2 if is_reload else 1,
        effective_pallets,
    )
    return assignment


def unassign(consignment_id):
    consignment_id = require_identifier(consignment_id, "consignment_id")
    with db.transaction() as connection:
        assignment = _require_assignment(connection, consignment_id)
        db.delete_assignment_for_consignment(connection, consignment_id)
    logger.info("Unassigned %s from lorry %s", consignment_id, assignment["lorry_id"])
    return assignment


def move(consignment_id, lorry_id, index=None, is_reload=False):
    """Take an assigned consignment off its lorry and place it on another (or the same)."""

    consignment_id = require_identifier(consignment_id, "consignment_id")
    lorry_id = require_int_id(lorry_id, "lorry_id")
    index = _coerce_index(index)
    is_reload = coerce_bool(is_reload)

    with db.transaction() as connection:
        current = _require_assignment(connection, consignment_id)
        _require_lorry(connection, lorry_id)
        db.delete_assignment_for_consignment(connection, consignment_id)
        assignment_id = _place(
            connection,
            lorry_id,
            consignment_id,
            current["effective_pallets"],
            current["effective_weight"],
            is_reload,
            index,
        )
        assignment = db.get_assignment(assignment_id, connection=connection)

    logger.info(
        "Moved %s from lorry %s to lorry %s (run %s)",
        consignment_id,
        current["lorry_id"],
        lorry_id,
        2 if is_reload else 1,
    )
    return assignment


def reorder(lorry_id, ordered_consignment_ids):
    """Replace the lorry's order with ``ordered_consignment_ids``, all or nothing."""

    lorry_id = require_int_id(lorry_id, "lorry_id")
    if not isinstance(ordered_consignment_ids, (list, tuple)):
        raise InvalidInputError("Ordered consignment ids must be a list.")
    ordered_ids = [require_identifier(value, "consignment_id") for value in ordered_consignment_ids]
    if len(set(ordered_ids)) != len(ordered_ids):
        raise InvalidInputError("Ordered consignment ids contain duplicates.")

    with db.transaction() as connection:
        _require_lorry(connection, lorry_id)
        current = db.list_assignments_for_lorry(lorry_id, connection=connection)
        by_consignment = {a["consignment_id"]: a for a in current}
        missing = sorted(set(by_consignment) - set(ordered_ids))
        unexpected = sorted(set(ordered_ids) - set(by_consignment))
        if missing or unexpected:
            logger.warning(
                "Rejected reorder for lorry %s: missing=%s unexpected=%s",
                lorry_id,
                missing,
                unexpected,
            )
            raise ConflictError(
                "Consignment list does not match the lorry's current assignments. Refresh and try again.",
                missing=missing,
                unexpected=unexpected,
            )
        _write_positions(connection, [by_consignment[cid] for cid in ordered_ids])
        updated = db.list_assignments_for_lorry(lorry_id, connection=connection)

    logger.info("Reordered %s assignments on lorry %s", len(ordered_ids), lorry_id)
    return updated


def set_reload_flag(assignment_id, is_reload):
    """Switch one assignment between runs; it joins the end of the other run."""

    assignment_id = require_int_id(assignment_id, "assignment_id")
    is_reload = coerce_bool(is_reload)
    with db.transaction() as connection:
        assignment = db.get_assignment(assignment_id, connection=connection)
        if not assignment:
            raise NotFoundError(f"Assignment {assignment_id} not found.")
        if assignment["is_reload"] != is_reload:
            ordered = [
                a
                for a in db.list_assignments_for_lorry(assignment["lorry_id"], connection=connection)
                if a["id"] != assignment_id
            ]
            assignment["is_reload"] = is_reload
            ordered.append(assignment)
            _write_positions(connection, ordered)
        assignment = db.get_assignment(assignment_id, connection=connection)

    logger.info("Assignment %s reload flag set to %s", assignment_id, is_reload)
    return assignment


def mark_all_as_reload(lorry_id):
    """Move every Run 1 job on the lorry after the existing Run 2 jobs."""

    lorry_id = require_int_id(lorry_id, "lorry_id")
    with db.transaction() as connection:
        _require_lorry(connection, lorry_id)
        current = db.list_assignments_for_lorry(lorry_id, connection=connection)
        run2 = [a for a in current if a["is_reload"]]
        run1 = [a for a in current if not a["is_reload"]]
        for assignment in run1:
            assignment["is_reload"] = True
        _write_positions(connection, run2 + run1)
        updated = db.list_assignments_for_lorry(lorry_id, connection=connection)

    logger.info("Marked %s assignments on lorry %s as reload", len(run1), lorry_id)
    return updated


def is_date_reload(eta_iso, transport_date):
    """True when the job's ETA date falls before the plan's transport date."""

    eta_text = (eta_iso or "").strip()
    plan_text = (transport_date or "").strip()
    if not eta_text or not plan_text:
        return False
    return eta_text[:10] < plan_text[:10]


def display_reload(assignment, transport_date=None):
    consignment = assignment.get("consignment") or {}
    return bool(assignment.get("is_reload")) or is_date_reload(
        consignment.get("eta_iso"), transport_date
    )
