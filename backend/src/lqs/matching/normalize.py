"""Normalization of product descriptions, sub-producers and phones."""

import re
from enum import Enum


class ProductType(str, Enum):
    """Closed set of product lines used for matching."""

    AUTO = "AUTO"
    HOME = "HOME"
    LANDLORD = "LANDLORD"
    RENTERS = "RENTERS"
    MOBILE = "MOBILE"
    UMBRELLA = "UMBRELLA"
    FLOOD = "FLOOD"
    BOAT = "BOAT"
    MOTOR_CLUB = "MOTOR_CLUB"
    SPP = "SPP"
    OTHER = "OTHER"
    UNKNOWN = "UNKNOWN"


# Carrier abbreviations that appear on their own in quote and sales reports
_ABBREVIATIONS = {
    "SA": ProductType.AUTO,
    "HO": ProductType.HOME,
    "LL": ProductType.LANDLORD,
    "MC": ProductType.MOTOR_CLUB,
    "MH": ProductType.MOBILE,
    "PUP": ProductType.UMBRELLA,
}

# Ordered: the first matching rule wins ("Motor Club" is not AUTO,
# "Mobile Home" is not HOME, "Landlord Package" is not HOME)
_PRODUCT_RULES: list[tuple[re.Pattern[str], ProductType]] = [
    (re.compile(r"MOTOR[\s_]*CLUB"), ProductType.MOTOR_CLUB),
    (re.compile(r"UMBRELLA"), ProductType.UMBRELLA),
    (re.compile(r"FLOOD"), ProductType.FLOOD),
    (re.compile(r"BOAT|WATERCRAFT|YACHT"), ProductType.BOAT),
    (re.compile(r"MOBILE|MANUFACTURED"), ProductType.MOBILE),
    (re.compile(r"LANDLORD"), ProductType.LANDLORD),
    (re.compile(r"RENTER|TENANT"), ProductType.RENTERS),
    (re.compile(r"\bSPP\b|SPECIAL\s+PERSONAL\s+PROPERTY"), ProductType.SPP),
    (re.compile(r"AUTO|VEHICLE"), ProductType.AUTO),
    (re.compile(r"HOME|CONDO"), ProductType.HOME),
]

_PRODUCT_VALUES = {p.value for p in ProductType}

_NOT_APPLICABLE = "not applicable"


def normalize_product_type(raw: str | None) -> ProductType:
    """Map a free-text product description to a ProductType.

    Args:
        raw: Product text, e.g. "Standard Auto" or "HO"

    Returns:
        Matching ProductType; OTHER for unrecognized text, UNKNOWN for empty
    """
    if raw is None:
        return ProductType.UNKNOWN
    text = " ".join(str(raw).upper().split())
    if not text:
        return ProductType.UNKNOWN

    # Already normalized values map to themselves
    if text in _PRODUCT_VALUES:
        return ProductType(text)
    if text in _ABBREVIATIONS:
        return _ABBREVIATIONS[text]

    for pattern, product_type in _PRODUCT_RULES:
        if pattern.search(text):
            return product_type

    return ProductType.OTHER


def extract_sub_producer_code(raw: str | None) -> str | None:
    """Extract the code from a ``"<code>-<name>"`` sub-producer value.

    Args:
        raw: Sub-producer as reported, e.g. "723-ANTHONY MCDERMOTT" or "009"

    Returns:
        The trimmed text before the first hyphen, or None when empty
        or "not applicable"
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text or text.lower() == _NOT_APPLICABLE:
        return None
    code = text.split("-", 1)[0].strip()
    return code or None


def normalize_phone(raw: str | None) -> str:
    """Reduce a phone number to its digits."""
    if not raw:
        return ""
    return re.sub(r"[^0-9]", "", str(raw))


def merge_phones(existing: list[str] | None, incoming: list[str] | str | None) -> list[str]:
    """Merge phone lists, keeping order and dropping numbers already present.

    Two numbers are the same when their digits are the same, so
    "(555) 123-4567" and "555.123.4567" collapse to the first one seen.

    Args:
        existing: Phones already on the household
        incoming: New phone or phones

    Returns:
        Merged list
    """
    if isinstance(incoming, str):
        incoming = [incoming]

    merged: list[str] = []
    seen: set[str] = set()
    for phone in list(existing or []) + list(incoming or []):
        digits = normalize_phone(phone)
        if not digits or digits in seen:
            continue
        seen.add(digits)
        merged.append(phone.strip())
    return merged
