import logging
import math
import os

logger = logging.getLogger(__name__)

DEFAULT_PALLET_FALLBACK = 1
DEFAULT_CAPACITY_PALLETS = 26
DEFAULT_CAPACITY_WEIGHT_KG = 24000
DEFAULT_MISSING_PALLETS_FALLBACK = 1


def _env_number(name, default, minimum=None, integer=False):
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        parsed = float(raw)
    except ValueError:
        parsed = None
    if parsed is None or not math.isfinite(parsed):
        logger.warning("Ignoring %s=%r: expected a number.", name, raw)
        return default
    if minimum is not None and parsed < minimum:
        logger.warning("Ignoring %s=%r: must be at least %s.", name, raw, minimum)
        return default
    if integer:
        return int(parsed)
    return parsed


def load_pallet_fallback():
    return _env_number("PALLET_FALLBACK", DEFAULT_PALLET_FALLBACK, integer=True)


PALLET_FALLBACK = load_pallet_fallback()
CAPACITY_PALLETS = _env_number(
    "TRAILER_CAPACITY_PALLETS", DEFAULT_CAPACITY_PALLETS, minimum=1, integer=True
)
CAPACITY_WEIGHT_KG = _env_number(
    "LORRY_CAPACITY_WEIGHT_KG", DEFAULT_CAPACITY_WEIGHT_KG, minimum=1
)
MISSING_PALLETS_FALLBACK = _env_number(
    "MISSING_PALLETS_FALLBACK", DEFAULT_MISSING_PALLETS_FALLBACK, minimum=0, integer=True
)
