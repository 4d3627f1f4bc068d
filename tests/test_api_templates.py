"""API tests for template endpoints."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from credit_rating.activity.sink import InMemoryActivityLog
from credit_rating.api.main import create_app

AUTHOR_KEY = "test-key-author"
APPROVER_KEY = "test-key-approver"
ASSESSOR_KEY = "test-key-assessor"
ADMIN_KEY = "test-key-admin"


def _headers(api_key: str) -> dict[str, str]:
    return {"X-Credit-Rating-API-Key": api_key}


@pytest.fixture
def client(activity_log: InMemoryActivityLog) -> TestClient:
    """Create test client with in-memory stores."""
    return TestClient(create_app(activity_log=activity_log))


@pytest.fixture
def template_id(client: TestClient, template_payload: dict[str, Any]) -> str:
    response = client.post("/v1/templates", json=template_payload, headers=_headers(AUTHOR_KEY))
    assert response.status_code == 201
    return response.json()["template_id"]


class TestCreateTemplate:
    def test_create_returns_pending_template(
        self, client: TestClient, template_payload: dict[str, Any]
    ) -> None:
        response = client.post(
            "/v1/templates", json=template_payload, headers=_headers(AUTHOR_KEY)
        )

        assert response.status_code == 201
        body = response.json()
        assert body["approval_status"] == "pending"
        assert body["status"] == "inactive"
        assert body["created_by"] == "author-1"
        assert body["categories"][0]["questions"][0]["proposed_weight"] == {
            "new": "60",
            "existing": "50",
        }

    def test_assessor_cannot_create(
        self, client: TestClient, template_payload: dict[str, Any]
    ) -> None:
        response = client.post(
            "/v1/templates", json=template_payload, headers=_headers(ASSESSOR_KEY)
        )

        assert response.status_code == 403
        assert response.json()["code"] == "RBAC_DENIED"

    def test_missing_weight_is_request_validation_error(
        self, client: TestClient, template_payload: dict[str, Any]
    ) -> None:
        del template_payload["categories"][0]["questions"][0]["proposed_weight"]["new"]

        response = client.post(
            "/v1/templates", json=template_payload, headers=_headers(AUTHOR_KEY)
        )

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "REQUEST_VALIDATION_FAILED"
        fields = [e["field"] for e in body["details"]["errors"]]
        assert "categories.0.questions.0.proposed_weight.new" in fields

    def test_duplicate_name_is_400(
        self, client: TestClient, template_id: str, template_payload: dict[str, Any]
    ) -> None:
        template_payload["name"] = template_payload["name"].upper()

        response = client.post(
            "/v1/templates", json=template_payload, headers=_headers(AUTHOR_KEY)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_FAILED"


class TestTemplateApproval:
    def test_approve_without_body(self, client: TestClient, template_id: str) -> None:
        response = client.post(
            f"/v1/templates/{template_id}/approve", headers=_headers(APPROVER_KEY)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["approval_status"] == "approved"
        assert body["status"] == "active"
        assert body["approved_by"] == "approver-1"

    def test_approve_twice_is_409(self, client: TestClient, template_id: str) -> None:
        client.post(f"/v1/templates/{template_id}/approve", headers=_headers(APPROVER_KEY))

        response = client.post(
            f"/v1/templates/{template_id}/approve", headers=_headers(ADMIN_KEY)
        )

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "STATE_CONFLICT"
        assert body["details"]["current_status"] == "approved"
        assert body["request_id"]

    def test_author_cannot_approve(self, client: TestClient, template_id: str) -> None:
        response = client.post(
            f"/v1/templates/{template_id}/approve", headers=_headers(AUTHOR_KEY)
        )
        assert response.status_code == 403

    def test_reject_blank_comments_is_400(self, client: TestClient, template_id: str) -> None:
        response = client.post(
            f"/v1/templates/{template_id}/reject",
            json={"comments": "  "},
            headers=_headers(APPROVER_KEY),
        )

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "comments"

    def test_reject_then_resubmit(
        self, client: TestClient, template_id: str, activity_log: InMemoryActivityLog
    ) -> None:
        rejected = client.post(
            f"/v1/templates/{template_id}/reject",
            json={"comments": "Weights need review"},
            headers=_headers(APPROVER_KEY),
        )
        assert rejected.json()["approval_comments"] == "Weights need review"

        resubmitted = client.post(
            f"/v1/templates/{template_id}/resubmit", json={}, headers=_headers(AUTHOR_KEY)
        )

        assert resubmitted.status_code == 200
        assert resubmitted.json()["approval_status"] == "pending"
        assert activity_log.actions() == [
            "template_created",
            "template_rejected",
            "template_resubmitted",
        ]

    def test_update_approved_template_is_409(
        self, client: TestClient, template_id: str, template_payload: dict[str, Any]
    ) -> None:
        client.post(f"/v1/templates/{template_id}/approve", headers=_headers(APPROVER_KEY))
        template_payload["name"] = "Edited"

        response = client.put(
            f"/v1/templates/{template_id}", json=template_payload, headers=_headers(AUTHOR_KEY)
        )

        assert response.status_code == 409


class TestTemplateQueries:
    def test_get_unknown_template_is_404(self, client: TestClient) -> None:
        response = client.get("/v1/templates/nope", headers=_headers(ASSESSOR_KEY))

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_list_filters_by_status(self, client: TestClient, template_id: str) -> None:
        pending = client.get(
            "/v1/templates", params={"approval_status": "pending"}, headers=_headers(ASSESSOR_KEY)
        )
        approved = client.get(
            "/v1/templates",
            params={"approval_status": "approved"},
            headers=_headers(ASSESSOR_KEY),
        )

        assert [t["template_id"] for t in pending.json()["items"]] == [template_id]
        assert approved.json()["items"] == []

    def test_pending_queue_requires_approver(self, client: TestClient, template_id: str) -> None:
        response = client.get("/v1/templates/pending", headers=_headers(ASSESSOR_KEY))
        assert response.status_code == 403

        response = client.get("/v1/templates/pending", headers=_headers(APPROVER_KEY))
        assert [t["template_id"] for t in response.json()["items"]] == [template_id]

    def test_selectable_excludes_hidden(self, client: TestClient, template_id: str) -> None:
        client.post(f"/v1/templates/{template_id}/approve", headers=_headers(APPROVER_KEY))
        selectable = client.get("/v1/templates/selectable", headers=_headers(ASSESSOR_KEY))
        assert len(selectable.json()["items"]) == 1

        hidden = client.put(
            f"/v1/templates/{template_id}/visibility",
            json={"hidden": True},
            headers=_headers(AUTHOR_KEY),
        )
        assert hidden.json()["is_hidden"] is True

        selectable = client.get("/v1/templates/selectable", headers=_headers(ASSESSOR_KEY))
        assert selectable.json()["items"] == []

    def test_delete_template(self, client: TestClient, template_id: str) -> None:
        response = client.delete(f"/v1/templates/{template_id}", headers=_headers(ADMIN_KEY))

        assert response.status_code == 200
        assert response.json()["is_deleted"] is True
        assert (
            client.get(f"/v1/templates/{template_id}", headers=_headers(ADMIN_KEY)).status_code
            == 404
        )
