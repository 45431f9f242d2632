import db

from services import validation
from services.normalize import normalize_customer


def list_customer_profiles():
    return db.list_customer_profiles()


def save_customer_profile(form):
    display_name = str(form.get("display_name") or "").strip()
    customer_key = normalize_customer(form.get("customer_key") or display_name)

    errors = {}
    validation.validate_required(display_name, "display_name", errors)
    validation.validate_required(customer_key, "customer_key", errors)
    validation.raise_for_errors(errors)
    default_pallets = validation.coerce_quantity(
        form.get("default_pallets"), "default_pallets", integer=True
    )

    profile = {
        "customer_key": customer_key,
        "display_name": display_name,
        "default_pallets": default_pallets,
    }
    db.upsert_customer_profile(profile)
    return profile
