"""Pure matching functions: household keys, normalization and scoring."""

from .keys import build_household_key, normalize_name_part, normalize_zip
from .normalize import (
    ProductType,
    extract_sub_producer_code,
    merge_phones,
    normalize_phone,
    normalize_product_type,
)
from .scoring import MAX_SCORE, MatchScore, score, score_household

__all__ = [
    "MAX_SCORE",
    "MatchScore",
    "ProductType",
    "build_household_key",
    "extract_sub_producer_code",
    "merge_phones",
    "normalize_name_part",
    "normalize_phone",
    "normalize_product_type",
    "normalize_zip",
    "score",
    "score_household",
]
