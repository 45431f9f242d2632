import logging

import db
from services import config
from services.errors import NotFoundError
from services.validation import coerce_quantity, require_identifier

logger = logging.getLogger(__name__)


class PalletResolver:
    """Resolve the authoritative pallet count for a consignment.

    Precedence is strict: manual override, then the count reported by the
    origin site (zero included), then the customer's default, then the
    configured fallback. The lookups are injected so the chain can run
    against any store; by default they read from ``db``.
    """

    def __init__(
        self,
        get_consignment=None,
        get_pallet_override=None,
        get_customer_profile=None,
        fallback_pallets=None,
    ):
        self.get_consignment = get_consignment or db.get_consignment
        self.get_pallet_override = get_pallet_override or db.get_pallet_override
        self.get_customer_profile = get_customer_profile or db.get_customer_profile
        self.fallback_pallets = (
            config.PALLET_FALLBACK if fallback_pallets is None else fallback_pallets
        )

    def resolve(self, consignment_id):
        consignment = self.get_consignment(consignment_id)
        if not consignment:
            return self.fallback_pallets
        return self.resolve_for(consignment)

    def resolve_for(self, consignment):
        override = self.get_pallet_override(consignment["id"])
        if override:
            return override["pallets"]

        # Zero is an explicit report ("awaiting count"), not missing data.
        if consignment.get("pallets_from_site") is not None:
            return consignment["pallets_from_site"]

        customer_key = consignment.get("customer_key")
        if customer_key:
            profile = self.get_customer_profile(customer_key)
            if profile:
                return profile["default_pallets"]

        return self.fallback_pallets


_default_resolver = None


def get_resolver():
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = PalletResolver()
    return _default_resolver


def resolver_for_connection(connection):
    """A resolver whose lookups run inside an open transaction."""

    return PalletResolver(
        get_consignment=lambda key: db.get_consignment(key, connection=connection),
        get_pallet_override=lambda key: db.get_pallet_override(key, connection=connection),
        get_customer_profile=lambda key: db.get_customer_profile(key, connection=connection),
        fallback_pallets=get_resolver().fallback_pallets,
    )


def resolve_effective_pallets(consignment_id):
    return get_resolver().resolve(consignment_id)


def is_missing_pallets(pallets):
    return pallets is None or pallets == 0


def set_pallet_override(consignment_id, pallets):
    """Store a manual pallet count and push it onto any live assignment."""

    consignment_id = require_identifier(consignment_id, "consignment_id")
    pallets = coerce_quantity(pallets, "pallets", integer=True)
    with db.transaction() as connection:
        if not db.get_consignment(consignment_id, connection=connection):
            raise NotFoundError(f"Consignment {consignment_id} not found.")
        db.upsert_pallet_override(consignment_id, pallets, connection=connection)
        db.update_assignment_effective_pallets(consignment_id, pallets, connection=connection)
    logger.info("Pallet override for %s set to %s", consignment_id, pallets)
    return {"consignment_id": consignment_id, "pallets": pallets}


def clear_pallet_override(consignment_id):
    consignment_id = require_identifier(consignment_id, "consignment_id")
    with db.transaction() as connection:
        removed = db.delete_pallet_override(consignment_id, connection=connection)
        if not removed:
            raise NotFoundError(f"No pallet override for consignment {consignment_id}.")
        pallets = resolver_for_connection(connection).resolve(consignment_id)
        db.update_assignment_effective_pallets(consignment_id, pallets, connection=connection)
    logger.info("Pallet override for %s cleared; resolved to %s", consignment_id, pallets)
    return {"consignment_id": consignment_id, "pallets": pallets}
