"""CustomerDirectoryService - lookup and registration of customers.

A customer found by id or NIC is an existing customer; anyone else is new.
Registration is refused when the id or NIC is already taken.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from credit_rating.errors import ValidationError
from credit_rating.models.customer import Customer, CustomerLookup, validate_nic
from credit_rating.models.template import CustomerType
from credit_rating.persistence.db import store_errors
from credit_rating.persistence.repositories.customers import get_customers_repository

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

CUSTOMER_DIRECTORY = "customer_directory"


class RegisterCustomerInput(BaseModel):
    """Input model for registering a customer."""

    customer_id: str = Field(..., description="Institution's customer identifier")
    customer_name: str = Field(..., description="Customer display name")
    nic: str = Field(..., description="National identity card number")
    contact_number: str = Field(default="")
    email: str = Field(default="")
    address: str = Field(default="")


class CustomerDirectoryService:
    """Service layer over the customer directory."""

    def __init__(self, db_conn: Connection | None = None) -> None:
        self._customers = get_customers_repository(db_conn)

    def lookup(self, customer_id: str | None = None, nic: str | None = None) -> CustomerLookup:
        """Look a customer up by id or NIC.

        Raises:
            ValidationError: Neither key given.
            DependencyError: Directory unavailable.
        """
        customer_id = (customer_id or "").strip() or None
        nic = (nic or "").strip() or None
        if customer_id is None and nic is None:
            raise ValidationError(
                "customer_id or nic is required for lookup",
                details={"fields": ["customer_id", "nic"]},
            )

        with store_errors(CUSTOMER_DIRECTORY):
            record = self._customers.find_by_id_or_nic(customer_id, nic)
        if record is None:
            return CustomerLookup(found=False, customer_type=CustomerType.NEW)
        return CustomerLookup(
            found=True,
            customer_type=CustomerType.EXISTING,
            customer=Customer.model_validate(record),
        )

    def register(self, input_data: RegisterCustomerInput) -> Customer:
        """Register a new customer.

        Raises:
            ValidationError: Blank name/id or malformed NIC.
            StateConflictError: Customer id or NIC already registered.
            DependencyError: Directory unavailable.
        """
        customer_id = input_data.customer_id.strip()
        customer_name = input_data.customer_name.strip()
        if not customer_id:
            raise ValidationError("customer_id is required", details={"field": "customer_id"})
        if not customer_name:
            raise ValidationError("customer_name is required", details={"field": "customer_name"})
        nic = validate_nic(input_data.nic)

        with store_errors(CUSTOMER_DIRECTORY):
            record = self._customers.create(
                customer_id=customer_id,
                customer_name=customer_name,
                nic=nic,
                contact_number=input_data.contact_number.strip(),
                email=input_data.email.strip(),
                address=input_data.address.strip(),
            )
        logger.info("Registered customer %s", customer_id)
        return Customer.model_validate(record)

    def unregister(self, customer_id: str) -> None:
        """Remove a customer whose registering operation then failed.

        Raises:
            DependencyError: Directory unavailable.
        """
        with store_errors(CUSTOMER_DIRECTORY):
            removed = self._customers.delete(customer_id)
        if removed:
            logger.info("Unregistered customer %s", customer_id)
