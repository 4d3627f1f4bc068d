"""Credit rating FastAPI application factory.

This module provides the create_app() factory for bootstrapping the API.
"""

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from credit_rating.activity.sink import ActivityLog, get_activity_log
from credit_rating.api.errors import (
    ERROR_RESPONSES,
    CreditRatingHttpError,
    credit_rating_http_error_handler,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
    service_error_handler,
)
from credit_rating.api.middleware.db_tx import DBTransactionMiddleware
from credit_rating.api.middleware.request_id import RequestIdMiddleware
from credit_rating.api.routes.customer_assessments import router as customer_assessments_router
from credit_rating.api.routes.customers import router as customers_router
from credit_rating.api.routes.health import API_VERSION
from credit_rating.api.routes.health import router as health_router
from credit_rating.api.routes.scoring import router as scoring_router
from credit_rating.api.routes.templates import router as templates_router
from credit_rating.errors import CreditRatingError
from credit_rating.logging_config import configure_logging


def create_app(activity_log: ActivityLog | None = None) -> FastAPI:
    """Create and configure the credit rating FastAPI application.

    Middleware ordering (outermost to innermost):
    1. RequestIdMiddleware - ensures request_id is available everywhere
    2. DBTransactionMiddleware - request-scoped connection when Postgres configured

    Starlette middleware is added in reverse order (last added = outermost).
    Authentication and role checks are route dependencies.

    Args:
        activity_log: Activity log sink for testing. If None, uses the
            configured sink (Postgres table or JSONL file).

    Returns:
        Configured FastAPI application instance.
    """
    configure_logging()

    app = FastAPI(
        title="Credit Rating API",
        description="Weighted credit rating templates and customer assessments",
        version=API_VERSION,
    )

    app.state.activity_log = activity_log if activity_log is not None else get_activity_log()

    app.add_middleware(DBTransactionMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(CreditRatingHttpError, credit_rating_http_error_handler)
    app.add_exception_handler(CreditRatingError, service_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    for router in (
        templates_router,
        customer_assessments_router,
        customers_router,
        scoring_router,
    ):
        app.include_router(router, responses=ERROR_RESPONSES)

    return app
