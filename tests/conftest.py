"""Pytest configuration and fixtures for credit rating tests.

Every test starts with empty in-memory stores and without a database URL,
so services use the in-memory repositories unless a test opts into Postgres.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from credit_rating.activity.sink import ACTIVITY_LOG_PATH_ENV, InMemoryActivityLog
from credit_rating.api.auth import API_KEYS_ENV
from credit_rating.persistence.db import DATABASE_URL_ENV
from credit_rating.persistence.repositories import clear_all_in_memory_stores
from credit_rating.scoring.weights import WEIGHT_SUM_POLICY_ENV

AUTHOR_KEY = "test-key-author"
APPROVER_KEY = "test-key-approver"
ASSESSOR_KEY = "test-key-assessor"
ADMIN_KEY = "test-key-admin"
AUDITOR_KEY = "test-key-auditor"


def make_api_keys_json() -> str:
    """Registry with one key per role."""
    return json.dumps(
        {
            AUTHOR_KEY: {"actor_id": "author-1", "name": "Ann Author", "roles": ["AUTHOR"]},
            APPROVER_KEY: {
                "actor_id": "approver-1",
                "name": "Abe Approver",
                "roles": ["APPROVER"],
            },
            ASSESSOR_KEY: {
                "actor_id": "assessor-1",
                "name": "Ola Officer",
                "roles": ["ASSESSOR"],
            },
            ADMIN_KEY: {"actor_id": "admin-1", "name": "Ada Admin", "roles": ["ADMIN"]},
            AUDITOR_KEY: {"actor_id": "auditor-1", "name": "Aud Itor", "roles": ["AUDITOR"]},
        }
    )


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> None:
    """Force in-memory storage and a temp activity log path."""
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
    monkeypatch.delenv(WEIGHT_SUM_POLICY_ENV, raising=False)
    monkeypatch.setenv(ACTIVITY_LOG_PATH_ENV, str(tmp_path / "activity.jsonl"))
    monkeypatch.setenv(API_KEYS_ENV, make_api_keys_json())


@pytest.fixture(autouse=True)
def clear_stores() -> None:
    """Clear in-memory stores before each test."""
    clear_all_in_memory_stores()


@pytest.fixture
def activity_log() -> InMemoryActivityLog:
    """Provide an in-memory activity log."""
    return InMemoryActivityLog()


@pytest.fixture
def template_payload() -> dict[str, Any]:
    """One category, two questions; weights sum to 100 for both customer types.

    New customer choosing a-high (80 x 60) and a-good (50 x 40) scores 68 (B).
    """
    return {
        "name": "Retail Loan Scorecard",
        "categories": [
            {
                "category_id": "c-fin",
                "category_name": "Financials",
                "questions": [
                    {
                        "question_id": "q-income",
                        "text": "Monthly income band",
                        "proposed_weight": {"new": "60", "existing": "50"},
                        "answers": [
                            {
                                "answer_id": "a-high",
                                "text": "Above 200k",
                                "score": {"new": "80", "existing": "90"},
                            },
                            {
                                "answer_id": "a-low",
                                "text": "Below 50k",
                                "score": {"new": "30", "existing": "20"},
                            },
                        ],
                    },
                    {
                        "question_id": "q-history",
                        "text": "Repayment history",
                        "proposed_weight": {"new": "40", "existing": "50"},
                        "answers": [
                            {
                                "answer_id": "a-good",
                                "text": "No arrears",
                                "score": {"new": "50", "existing": "70"},
                            },
                            {
                                "answer_id": "a-bad",
                                "text": "Arrears in last year",
                                "score": {"new": "10", "existing": "0"},
                            },
                        ],
                    },
                ],
            }
        ],
    }


@pytest.fixture
def full_selections() -> dict[str, str]:
    """Selections answering every question of template_payload."""
    return {"q-income": "a-high", "q-history": "a-good"}
