"""Customer directory service package."""

from credit_rating.services.customers.service import (
    CUSTOMER_DIRECTORY,
    CustomerDirectoryService,
    RegisterCustomerInput,
)

__all__ = [
    "CUSTOMER_DIRECTORY",
    "CustomerDirectoryService",
    "RegisterCustomerInput",
]
