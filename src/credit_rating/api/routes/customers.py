"""Customer directory routes.

Provides:
- GET  /v1/customers/lookup?customer_id=...&nic=...  (Lookup Customer)
- POST /v1/customers                                 (Register Customer)
- GET  /v1/customers/{customer_id}/history           (Customer Assessment History)
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from credit_rating.api.auth import ActorContext, RequireActorContext, require_roles
from credit_rating.api.policy import ASSESSORS
from credit_rating.api.routes._deps import get_assessment_service, get_customer_directory
from credit_rating.api.routes.customer_assessments import to_display
from credit_rating.models.assessment import CustomerHistory
from credit_rating.models.customer import Customer, CustomerLookup
from credit_rating.services.customers.service import RegisterCustomerInput

router = APIRouter(prefix="/v1", tags=["Customers"])

RequireAssessor = Annotated[ActorContext, Depends(require_roles(ASSESSORS))]


@router.get(
    "/customers/lookup",
    response_model=CustomerLookup,
    operation_id="lookupCustomer",
)
def lookup_customer(
    request: Request,
    actor: RequireActorContext,
    customer_id: str | None = None,
    nic: str | None = None,
) -> CustomerLookup:
    """Look a customer up by id or NIC; found customers are existing customers."""
    return get_customer_directory(request).lookup(customer_id, nic)


@router.post(
    "/customers",
    response_model=Customer,
    status_code=201,
    operation_id="registerCustomer",
)
def register_customer(
    body: RegisterCustomerInput,
    request: Request,
    actor: RequireAssessor,
) -> Customer:
    """Register a customer (409 if the id or NIC is taken)."""
    return get_customer_directory(request).register(body)


@router.get(
    "/customers/{customer_id}/history",
    response_model=CustomerHistory,
    operation_id="getCustomerHistory",
)
def get_customer_history(
    customer_id: str,
    request: Request,
    actor: RequireActorContext,
) -> CustomerHistory:
    """A customer's assessments, newest first, with status counts and latest rating."""
    history = get_assessment_service(request).customer_history(customer_id)
    return history.model_copy(
        update={"assessments": [to_display(a) for a in history.assessments]}
    )
