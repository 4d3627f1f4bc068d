"""Credit rating API authentication and actor context.

API keys are passed in the X-Credit-Rating-API-Key header and resolved
against a JSON registry held in CREDIT_RATING_API_KEYS_JSON:

    {"<key>": {"actor_id": "u-1", "name": "Jane", "roles": ["APPROVER"]}}

Fails closed on missing or invalid credentials. Unknown roles are rejected.
The resolved actor identity is what services record as created_by,
approved_by and so on.
"""

import hmac
import json
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError

from credit_rating.api.errors import CreditRatingHttpError
from credit_rating.api.policy import ALL_ROLES, is_allowed

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Credit-Rating-API-Key"
API_KEYS_ENV = "CREDIT_RATING_API_KEYS_JSON"


class ActorContext(BaseModel):
    """Authenticated caller."""

    actor_id: str
    name: str
    roles: frozenset[str] = frozenset()


class ApiKeyRecord(BaseModel):
    """API key registry entry."""

    actor_id: str
    name: str
    roles: list[str] = []


def _load_api_key_registry() -> dict[str, ApiKeyRecord]:
    """Load API key registry from environment variable.

    Returns:
        Dict mapping API key strings to ApiKeyRecord objects.
        Returns empty dict if env var missing or invalid JSON.
    """
    raw = os.environ.get(API_KEYS_ENV)
    if not raw:
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse %s; treating as empty registry", API_KEYS_ENV)
        return {}

    if not isinstance(parsed, dict):
        logger.warning("%s is not a dict; treating as empty registry", API_KEYS_ENV)
        return {}

    registry: dict[str, ApiKeyRecord] = {}
    for key, value in parsed.items():
        if not isinstance(key, str) or not isinstance(value, dict):
            continue
        try:
            registry[key] = ApiKeyRecord.model_validate(value)
        except ValidationError:
            logger.warning("Skipping malformed API key registry entry")
            continue

    return registry


def _constant_time_lookup(
    provided_key: str, registry: dict[str, ApiKeyRecord]
) -> ApiKeyRecord | None:
    """Look up API key comparing every entry with hmac.compare_digest."""
    matched_record: ApiKeyRecord | None = None
    provided_bytes = provided_key.encode("utf-8")

    for registered_key, record in registry.items():
        if hmac.compare_digest(provided_bytes, registered_key.encode("utf-8")):
            matched_record = record

    return matched_record


def _normalize_roles(roles: list[str]) -> frozenset[str]:
    """Normalize roles, rejecting unknown ones.

    Raises:
        CreditRatingHttpError: 401 if any role is unknown.
    """
    normalized: set[str] = set()
    for role in roles:
        upper_role = role.upper().strip()
        if upper_role not in ALL_ROLES:
            raise CreditRatingHttpError(
                status_code=401,
                code="UNAUTHORIZED",
                message="Invalid credentials",
            )
        normalized.add(upper_role)
    return frozenset(normalized)


def authenticate_request(request: Request) -> ActorContext:
    """Resolve the caller from the API key header.

    Raises:
        CreditRatingHttpError: 401 if key missing, invalid, or registry empty.
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        raise CreditRatingHttpError(
            status_code=401,
            code="UNAUTHORIZED",
            message="Missing API key",
        )

    record = _constant_time_lookup(api_key, _load_api_key_registry())
    if record is None:
        raise CreditRatingHttpError(
            status_code=401,
            code="UNAUTHORIZED",
            message="Invalid API key",
        )

    return ActorContext(
        actor_id=record.actor_id,
        name=record.name,
        roles=_normalize_roles(record.roles),
    )


async def require_actor_context(request: Request) -> ActorContext:
    """FastAPI dependency that enforces authentication.

    Stores the actor on request.state for downstream use.
    """
    actor = authenticate_request(request)
    request.state.actor_context = actor
    return actor


RequireActorContext = Annotated[ActorContext, Depends(require_actor_context)]


def require_roles(allowed_roles: frozenset[str]) -> Callable[..., Awaitable[ActorContext]]:
    """Build a dependency that authenticates and checks the actor's roles.

    Raises (from the dependency):
        CreditRatingHttpError: 401 on auth failure, 403 RBAC_DENIED if no
            allowed role is held.
    """

    async def dependency(actor: RequireActorContext) -> ActorContext:
        if not is_allowed(actor.roles, allowed_roles):
            logger.info(
                "RBAC denied for actor %s (roles=%s, required one of %s)",
                actor.actor_id,
                sorted(actor.roles),
                sorted(allowed_roles),
            )
            raise CreditRatingHttpError(
                status_code=403,
                code="RBAC_DENIED",
                message="Actor is not permitted to perform this operation",
                details={"required_roles": sorted(allowed_roles)},
            )
        return actor

    return dependency
