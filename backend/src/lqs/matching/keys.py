"""Household identity keys.

A household key is ``LASTNAME_FIRSTNAME_ZIP``, built only from exact
normalizations of the input. There is no initial or substring folding:
two people who share a surname always get different keys unless their
first names normalize to the same letters.
"""

import re
import unicodedata

UNKNOWN_NAME = "UNKNOWN"
NO_ZIP = "NOZIP"

_NON_LETTERS = re.compile(r"[^A-Z]")
_ZIP5 = re.compile(r"^\s*(\d{5})")


def normalize_name_part(value: str | None) -> str:
    """Normalize one name component for keys and exact comparison.

    Accents are folded to ASCII, the result is upper-cased and everything
    that is not a letter A-Z is removed.

    Args:
        value: Raw name component

    Returns:
        Normalized letters, or an empty string
    """
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return _NON_LETTERS.sub("", folded.upper().strip())


def normalize_zip(value: str | None) -> str:
    """Return the five-digit zip prefix, or ``NOZIP``."""
    if not value:
        return NO_ZIP
    match = _ZIP5.match(str(value))
    return match.group(1) if match else NO_ZIP


def build_household_key(
    last_name: str | None,
    first_name: str | None,
    zip_code: str | None,
) -> str:
    """Build the deterministic household key.

    Args:
        last_name: Surname as received
        first_name: Given name as received
        zip_code: Postal code as received (ZIP+4 is truncated)

    Returns:
        Key such as ``SMITH_JOHN_12345``
    """
    last = normalize_name_part(last_name) or UNKNOWN_NAME
    first = normalize_name_part(first_name) or UNKNOWN_NAME
    return f"{last}_{first}_{normalize_zip(zip_code)}"
