"""Customer directory repository.

Customers are registered the first time a new customer is assessed and are
looked up by customer id or NIC afterwards. Both keys are unique.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from credit_rating.errors import StateConflictError
from credit_rating.persistence.db import is_postgres_configured
from credit_rating.persistence.timestamps import to_iso, utc_now

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

_COLUMNS = "customer_id, customer_name, nic, contact_number, email, address, created_at"


def _duplicate_error(customer_id: str) -> StateConflictError:
    return StateConflictError(
        "customer",
        customer_id,
        current_status="exists",
        attempted="create",
        reason=f"Customer with id {customer_id} or the same NIC already exists",
    )


class CustomerStore(Protocol):
    """Read/write contract of the customer directory."""

    def find_by_id_or_nic(
        self, customer_id: str | None, nic: str | None
    ) -> dict[str, Any] | None: ...

    def create(
        self,
        *,
        customer_id: str,
        customer_name: str,
        nic: str,
        contact_number: str = "",
        email: str = "",
        address: str = "",
    ) -> dict[str, Any]: ...

    def delete(self, customer_id: str) -> bool: ...


class CustomersRepository:
    """Postgres repository for the customer directory."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def find_by_id_or_nic(
        self, customer_id: str | None, nic: str | None
    ) -> dict[str, Any] | None:
        """Find a customer matching either key. Customer id match wins."""
        if not customer_id and not nic:
            return None
        row = self._conn.execute(
            text(
                f"""
                SELECT {_COLUMNS}
                FROM customers
                WHERE customer_id = :customer_id OR upper(nic) = upper(:nic)
                ORDER BY (customer_id = :customer_id) DESC
                LIMIT 1
                """
            ),
            {"customer_id": customer_id or "", "nic": nic or ""},
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def create(
        self,
        *,
        customer_id: str,
        customer_name: str,
        nic: str,
        contact_number: str = "",
        email: str = "",
        address: str = "",
    ) -> dict[str, Any]:
        """Register a customer.

        Raises:
            StateConflictError: If the customer id or NIC is already registered.
        """
        try:
            # Savepoint so a duplicate does not poison the request transaction
            with self._conn.begin_nested():
                row = self._conn.execute(
                    text(
                        f"""
                        INSERT INTO customers (
                            customer_id, customer_name, nic, contact_number,
                            email, address, created_at
                        ) VALUES (
                            :customer_id, :customer_name, :nic, :contact_number,
                            :email, :address, :created_at
                        )
                        RETURNING {_COLUMNS}
                        """
                    ),
                    {
                        "customer_id": customer_id,
                        "customer_name": customer_name,
                        "nic": nic,
                        "contact_number": contact_number,
                        "email": email,
                        "address": address,
                        "created_at": utc_now(),
                    },
                ).fetchone()
        except IntegrityError:
            raise _duplicate_error(customer_id) from None
        return self._row_to_dict(row)

    def delete(self, customer_id: str) -> bool:
        """Remove a customer. Returns False if no such customer."""
        result = self._conn.execute(
            text("DELETE FROM customers WHERE customer_id = :customer_id"),
            {"customer_id": customer_id},
        )
        return bool(result.rowcount)

    def _row_to_dict(self, row: Any) -> dict[str, Any]:
        """Convert database row to dict."""
        return {
            "customer_id": row.customer_id,
            "customer_name": row.customer_name,
            "nic": row.nic,
            "contact_number": row.contact_number or "",
            "email": row.email or "",
            "address": row.address or "",
            "created_at": to_iso(row.created_at),
        }


_customers_in_memory_store: dict[str, dict[str, Any]] = {}
_customers_lock = threading.Lock()


class InMemoryCustomersRepository:
    """In-memory fallback for the customer directory."""

    def find_by_id_or_nic(
        self, customer_id: str | None, nic: str | None
    ) -> dict[str, Any] | None:
        """Find a customer matching either key. Customer id match wins."""
        with _customers_lock:
            if customer_id and customer_id in _customers_in_memory_store:
                return copy.deepcopy(_customers_in_memory_store[customer_id])
            if nic:
                wanted = nic.upper()
                for customer in _customers_in_memory_store.values():
                    if customer["nic"].upper() == wanted:
                        return copy.deepcopy(customer)
        return None

    def create(
        self,
        *,
        customer_id: str,
        customer_name: str,
        nic: str,
        contact_number: str = "",
        email: str = "",
        address: str = "",
    ) -> dict[str, Any]:
        """Register a customer in memory.

        Raises:
            StateConflictError: If the customer id or NIC is already registered.
        """
        with _customers_lock:
            if customer_id in _customers_in_memory_store or any(
                c["nic"].upper() == nic.upper() for c in _customers_in_memory_store.values()
            ):
                raise _duplicate_error(customer_id)
            customer = {
                "customer_id": customer_id,
                "customer_name": customer_name,
                "nic": nic,
                "contact_number": contact_number,
                "email": email,
                "address": address,
                "created_at": to_iso(utc_now()),
            }
            _customers_in_memory_store[customer_id] = customer
            return copy.deepcopy(customer)

    def delete(self, customer_id: str) -> bool:
        """Remove a customer from memory. Returns False if no such customer."""
        with _customers_lock:
            return _customers_in_memory_store.pop(customer_id, None) is not None


def clear_customers_in_memory_store() -> None:
    """Clear the in-memory customer directory. For testing only."""
    with _customers_lock:
        _customers_in_memory_store.clear()


def get_customers_repository(
    conn: Connection | None,
) -> CustomersRepository | InMemoryCustomersRepository:
    """Factory to get appropriate customer directory repository.

    Returns Postgres repository if configured, otherwise in-memory fallback.
    """
    if conn is not None and is_postgres_configured():
        return CustomersRepository(conn)
    return InMemoryCustomersRepository()
