"""Validated row schemas for the three input feeds.

Rows arrive already parsed into records; these models coerce the loose
values a spreadsheet export produces (currency strings, US dates,
"LAST, FIRST" names) into typed fields. A row that fails validation is
skipped by the batch runner with the pydantic error as its reason.
"""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
# An ISO timestamp may carry a time part; anything else after the date is rejected
_ISO_DATE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)


def parse_date(value: Any) -> date:
    """Parse a date from a date object, ``MM/DD/YYYY`` or ISO ``YYYY-MM-DD``.

    Raises:
        ValueError: If the value is empty or in an unknown format
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or not str(value).strip():
        raise ValueError("date is required")

    text = str(value).strip()
    match = _US_DATE.match(text)
    if match:
        month, day, year = (int(part) for part in match.groups())
    else:
        match = _ISO_DATE.match(text)
        if not match:
            raise ValueError(f"unparsable date: {text!r}")
        year, month, day = (int(part) for part in match.groups())

    try:
        return date(year, month, day)
    except ValueError as e:
        raise ValueError(f"invalid date {text!r}: {e}") from e


def parse_cents(value: Any) -> int:
    """Convert a premium such as ``1234.5`` or ``"$1,234.56"`` to integer cents.

    Raises:
        ValueError: If the value is missing or not numeric
    """
    if isinstance(value, bool):
        raise ValueError("premium must be numeric")
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError("premium is required")

    text = str(value).strip().replace("$", "").replace(",", "")
    try:
        amount = Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"premium is not numeric: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"premium is not numeric: {value!r}")

    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_customer_name(name: str) -> tuple[str | None, str | None]:
    """Split a combined customer name into (first, last).

    ``"SMITH, JOHN A"`` gives ``("JOHN", "SMITH")``; ``"John A Smith"`` gives
    ``("John", "Smith")``. A single word is taken as the last name.
    """
    name = " ".join(name.split())
    if not name:
        return None, None

    if "," in name:
        last, _, rest = name.partition(",")
        first_tokens = rest.split()
        return (first_tokens[0] if first_tokens else None), (last.strip() or None)

    tokens = name.split(" ")
    if len(tokens) == 1:
        return None, tokens[0]
    return tokens[0], tokens[-1]


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


def normalize_policy_number(v: str | None) -> str | None:
    """Policy numbers compare case-insensitively; store them upper-cased."""
    return v.upper() if v else v


class _Row(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        extra="ignore",
    )


class LeadRow(_Row):
    """A lead from a lead-source feed."""

    first_name: str | None = None
    last_name: str
    zip: str | None = None
    phone: str | None = None
    email: str | None = None
    received_date: date
    lead_source: str | None = None

    @field_validator("first_name", "zip", "phone", "email", "lead_source", mode="before")
    @classmethod
    def blank_optional(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("zip", "phone", mode="before")
    @classmethod
    def numeric_to_str(cls, v: Any) -> Any:
        # Spreadsheet exports hand zips and phones over as numbers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("last_name")
    @classmethod
    def require_last_name(cls, v: str) -> str:
        if not v:
            raise ValueError("last_name is required")
        return v

    @field_validator("received_date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> date:
        return parse_date(v)


class QuoteRow(_Row):
    """A quote from the carrier's quote report."""

    first_name: str | None = None
    last_name: str
    zip: str | None = None
    address: str | None = None
    issued_policy_number: str | None = None
    sub_producer: str | None = None
    product: str | None = None
    premium_cents: int = Field(alias="premium")
    production_date: date

    @field_validator(
        "first_name",
        "zip",
        "address",
        "issued_policy_number",
        "sub_producer",
        "product",
        mode="before",
    )
    @classmethod
    def blank_optional(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("last_name")
    @classmethod
    def require_last_name(cls, v: str) -> str:
        if not v:
            raise ValueError("last_name is required")
        return v

    @field_validator("premium_cents", mode="before")
    @classmethod
    def coerce_premium(cls, v: Any) -> int:
        return parse_cents(v)

    @field_validator("issued_policy_number")
    @classmethod
    def upper_policy_number(cls, v: str | None) -> str | None:
        return normalize_policy_number(v)

    @field_validator("production_date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> date:
        return parse_date(v)


class SaleRow(_Row):
    """An issued sale from the new-business report.

    Either ``customer_name`` or ``last_name`` must be present; the combined
    name is split only when the separate fields were not supplied.
    """

    customer_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    zip: str | None = None
    policy_number: str | None = None
    sub_producer: str | None = None
    product: str | None = None
    premium_cents: int = Field(alias="premium")
    issued_date: date

    @field_validator(
        "customer_name",
        "first_name",
        "last_name",
        "zip",
        "policy_number",
        "sub_producer",
        "product",
        mode="before",
    )
    @classmethod
    def blank_optional(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("premium_cents", mode="before")
    @classmethod
    def coerce_premium(cls, v: Any) -> int:
        return parse_cents(v)

    @field_validator("policy_number")
    @classmethod
    def upper_policy_number(cls, v: str | None) -> str | None:
        return normalize_policy_number(v)

    @field_validator("issued_date", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> date:
        return parse_date(v)

    @model_validator(mode="after")
    def resolve_names(self) -> "SaleRow":
        if self.last_name is None and self.customer_name:
            first, last = split_customer_name(self.customer_name)
            self.last_name = last
            if self.first_name is None:
                self.first_name = first
        if not self.last_name:
            raise ValueError("customer_name or last_name is required")
        return self
