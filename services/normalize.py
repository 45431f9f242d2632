import re

# Whole-word substitutions applied after punctuation and whitespace cleanup.
VOCABULARY_SUBSTITUTIONS = (
    (re.compile(r"\bLIMITED\b"), "LTD"),
)

_NON_KEY_CHARS = re.compile(r"[^A-Z0-9 ]+")
_WHITESPACE = re.compile(r"\s+")
_GIROBANK_POSTCODE = re.compile(r"\bGIR\s*0AA\b")
_POSTCODE = re.compile(r"\b([A-Z]{1,2}\d[A-Z\d]?)\s*(\d[A-Z]{2})\b")


def _normalize_key_text(value):
    """Uppercase, replace punctuation with spaces, collapse whitespace, canonicalize words.

    Returns None when nothing usable is left.
    """

    if value is None:
        return None
    text = str(value).upper()
    text = _NON_KEY_CHARS.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()
    for pattern, replacement in VOCABULARY_SUBSTITUTIONS:
        text = pattern.sub(replacement, text)
    return text or None


def normalize_customer(value):
    return _normalize_key_text(value)


def normalize_destination(value):
    return _normalize_key_text(value)


def normalize_postcode(value):
    """Trim and uppercase a postcode for storage. The shape is not validated."""

    if value is None:
        return None
    text = str(value).strip()
    return text.upper() if text else None


def extract_postcode(value):
    """Find a UK-style postcode in free text and return it as ``OUTWARD INWARD``."""

    text = _normalize_key_text(value)
    if not text:
        return None
    if _GIROBANK_POSTCODE.search(text):
        return "GIR 0AA"
    match = _POSTCODE.search(text)
    if not match:
        return None
    return f"{match.group(1)} {match.group(2)}"
