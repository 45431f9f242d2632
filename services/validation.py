import math

from services.errors import InvalidInputError

TRUCK_CLASSES = ("Class1", "Class2", "Vans")
LORRY_STATUSES = ("on", "off", "service")


def _label(field_name):
    return field_name.replace("_", " ").title()


def validate_required(value, field_name, errors):
    if value is None or not str(value).strip():
        errors[field_name] = f"{_label(field_name)} is required."


def validate_positive_int(value, field_name, errors):
    if value is None or value == "":
        errors[field_name] = f"{_label(field_name)} is required."
        return
    if isinstance(value, bool) or not str(value).strip().isdecimal() or int(value) <= 0:
        errors[field_name] = f"{_label(field_name)} must be a positive number."


def validate_positive_float(value, field_name, errors):
    if value is None or value == "":
        errors[field_name] = f"{_label(field_name)} is required."
        return
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None or not math.isfinite(parsed) or parsed <= 0:
        errors[field_name] = f"{_label(field_name)} must be a positive number."


def validate_choice(value, field_name, choices, errors):
    if value not in choices:
        errors[field_name] = f"{_label(field_name)} must be one of: {', '.join(choices)}."


def raise_for_errors(errors):
    if errors:
        first_error = next(iter(errors.values()))
        raise InvalidInputError(first_error, errors=errors)


def require_identifier(value, field_name):
    """Return a stripped identifier string or raise InvalidInputError."""

    if value is None or isinstance(value, bool):
        raise InvalidInputError(f"{_label(field_name)} is required.")
    text = str(value).strip()
    if not text:
        raise InvalidInputError(f"{_label(field_name)} is required.")
    return text


def require_int_id(value, field_name):
    text = require_identifier(value, field_name)
    if not (text.isascii() and text.isdecimal()):
        raise InvalidInputError(f"{_label(field_name)} must be numeric.")
    return int(text)


def coerce_quantity(value, field_name, integer=False, allow_none=False):
    """Parse a non-negative, finite pallet or weight quantity."""

    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise InvalidInputError(f"{_label(field_name)} is required.")
    if isinstance(value, bool):
        raise InvalidInputError(f"{_label(field_name)} must be a number.")
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{_label(field_name)} must be a number.")
    if not math.isfinite(parsed):
        raise InvalidInputError(f"{_label(field_name)} must be finite.")
    if parsed < 0:
        raise InvalidInputError(f"{_label(field_name)} cannot be negative.")
    if integer:
        if not parsed.is_integer():
            raise InvalidInputError(f"{_label(field_name)} must be a whole number.")
        return int(parsed)
    return parsed


def coerce_bool(value):
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on", "y"}
