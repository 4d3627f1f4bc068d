"""Persistence repositories for credit rating.

Provides data access with Postgres persistence and in-memory fallback for
development/testing.
"""

from credit_rating.persistence.repositories.customer_assessments import (
    CustomerAssessmentsRepository,
    CustomerAssessmentStore,
    InMemoryCustomerAssessmentsRepository,
    clear_customer_assessments_in_memory_store,
    get_customer_assessments_repository,
)
from credit_rating.persistence.repositories.customers import (
    CustomersRepository,
    CustomerStore,
    InMemoryCustomersRepository,
    clear_customers_in_memory_store,
    get_customers_repository,
)
from credit_rating.persistence.repositories.templates import (
    InMemoryTemplatesRepository,
    TemplatesRepository,
    TemplateStore,
    clear_templates_in_memory_store,
    get_templates_repository,
)


def clear_all_in_memory_stores() -> None:
    """Clear every in-memory store. For testing only."""
    clear_templates_in_memory_store()
    clear_customer_assessments_in_memory_store()
    clear_customers_in_memory_store()


__all__ = [
    "CustomerAssessmentStore",
    "CustomerAssessmentsRepository",
    "CustomerStore",
    "CustomersRepository",
    "InMemoryCustomerAssessmentsRepository",
    "InMemoryCustomersRepository",
    "InMemoryTemplatesRepository",
    "TemplateStore",
    "TemplatesRepository",
    "clear_all_in_memory_stores",
    "clear_customer_assessments_in_memory_store",
    "clear_customers_in_memory_store",
    "clear_templates_in_memory_store",
    "get_customer_assessments_repository",
    "get_customers_repository",
    "get_templates_repository",
]
