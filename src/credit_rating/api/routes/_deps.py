"""Per-request service construction shared by the /v1 routers."""

from typing import Any

from fastapi import Request

from credit_rating.services.assessments.service import CustomerAssessmentService
from credit_rating.services.customers.service import CustomerDirectoryService
from credit_rating.services.templates.service import TemplateService


def _db_conn(request: Request) -> Any:
    return getattr(request.state, "db_conn", None)


def get_template_service(request: Request) -> TemplateService:
    """TemplateService bound to the request's connection, if any."""
    return TemplateService(
        db_conn=_db_conn(request),
        activity_log=request.app.state.activity_log,
    )


def get_customer_directory(request: Request) -> CustomerDirectoryService:
    return CustomerDirectoryService(db_conn=_db_conn(request))


def get_assessment_service(request: Request) -> CustomerAssessmentService:
    """CustomerAssessmentService bound to the request's connection, if any."""
    db_conn = _db_conn(request)
    return CustomerAssessmentService(
        db_conn=db_conn,
        activity_log=request.app.state.activity_log,
        customer_directory=CustomerDirectoryService(db_conn=db_conn),
    )
