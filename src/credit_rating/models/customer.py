"""Customer directory models and NIC validation."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel

from credit_rating.errors import ValidationError
from credit_rating.models.template import CustomerType

_OLD_NIC_PATTERN = re.compile(r"^[0-9]{9}[xXvV]$")
_NEW_NIC_PATTERN = re.compile(r"^[0-9]{12}$")


def validate_nic(nic: str | None) -> str:
    """Validate a national identity card number and return it trimmed.

    Accepted formats: 9 digits followed by X or V (10 characters), or
    12 digits.

    Raises:
        ValidationError: If the NIC is missing or malformed.
    """
    if not isinstance(nic, str) or not nic.strip():
        raise ValidationError("NIC is required", details={"field": "nic"})

    trimmed = nic.strip()
    if len(trimmed) not in (10, 12):
        raise ValidationError(
            "NIC must be exactly 10 or 12 characters", details={"field": "nic"}
        )
    if len(trimmed) == 10 and not _OLD_NIC_PATTERN.match(trimmed):
        raise ValidationError(
            "10-character NIC must be 9 digits followed by X or V",
            details={"field": "nic"},
        )
    if len(trimmed) == 12 and not _NEW_NIC_PATTERN.match(trimmed):
        raise ValidationError(
            "12-character NIC must contain only digits", details={"field": "nic"}
        )
    return trimmed


class Customer(BaseModel):
    """A customer known to the directory."""

    customer_id: str
    customer_name: str
    nic: str
    contact_number: str = ""
    email: str = ""
    address: str = ""
    created_at: datetime | None = None


class CustomerLookup(BaseModel):
    """Result of looking a customer up by id or NIC."""

    found: bool
    customer_type: CustomerType
    customer: Customer | None = None
