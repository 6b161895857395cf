"""Per-resource data access for the onboarding graph.

The store offers no cross-table transactions: every method here is an
independent round trip. Callers that need several writes to succeed
together (the onboarding saga) must compensate on their own.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, cast

from postgrest.exceptions import APIError

from clinica.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from clinica.core.config import settings
from clinica.core.exceptions import ConflictError, DatabaseError
from clinica.db.supabase import get_supabase_client
from supabase import Client

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
ROLES_TABLE = "user_roles"
CLINICS_TABLE = "clinics"
PROFESSIONALS_TABLE = "professionals"
CLINIC_LINKS_TABLE = "clinic_professionals"
TEMPLATES_TABLE = "procedure_templates"

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"

Row = dict[str, Any]


def _is_unique_violation(exc: BaseException) -> bool:
    return isinstance(exc, APIError) and exc.code == UNIQUE_VIOLATION


# A duplicate row is the caller's business, not an outage
_supabase_circuit_breaker = CircuitBreaker(
    "supabase",
    failure_threshold=settings.SUPABASE_FAILURE_THRESHOLD,
    recovery_timeout=settings.SUPABASE_RECOVERY_TIMEOUT,
    is_expected=_is_unique_violation,
)


def get_supabase_circuit_breaker() -> CircuitBreaker:
    """Breaker shared by every store call."""
    return _supabase_circuit_breaker


class ClinicRepository(ABC):
    """Abstract access to the resources created during onboarding.

    Lookups return ``None`` when the row does not exist. Inserts that hit
    a unique constraint raise :class:`ConflictError`; every other failure
    raises :class:`DatabaseError`.
    """

    # -- Profiles -------------------------------------------------------------

    @abstractmethod
    async def get_profile(self, user_id: str) -> Row | None:
        """Fetch the profile keyed by the identity id."""

    @abstractmethod
    async def upsert_profile(self, user_id: str, data: Row) -> Row:
        """Create the profile keyed by the identity id, or update the given columns."""

    @abstractmethod
    async def update_profile(self, user_id: str, data: Row) -> Row | None:
        """Patch an existing profile; ``None`` if it does not exist."""

    # -- Roles ----------------------------------------------------------------

    @abstractmethod
    async def list_roles(self, user_id: str) -> list[Row]:
        """List every role row held by the identity."""

    @abstractmethod
    async def get_role(self, user_id: str, role: str) -> Row | None:
        """Fetch the identity's role of the given kind."""

    @abstractmethod
    async def insert_role(self, data: Row) -> Row:
        """Insert a role row."""

    @abstractmethod
    async def update_role(self, role_id: str, data: Row) -> Row | None:
        """Patch a role row by id."""

    @abstractmethod
    async def delete_role(self, role_id: str) -> None:
        """Delete a role row by id."""

    # -- Clinics --------------------------------------------------------------

    @abstractmethod
    async def get_clinic(self, clinic_id: str) -> Row | None:
        """Fetch a clinic by id."""

    @abstractmethod
    async def insert_clinic(self, data: Row) -> Row:
        """Insert a clinic; the store generates its id."""

    @abstractmethod
    async def delete_clinic(self, clinic_id: str) -> None:
        """Delete a clinic by id."""

    # -- Professionals --------------------------------------------------------

    @abstractmethod
    async def get_professional(self, user_id: str) -> Row | None:
        """Fetch the professional record of the identity."""

    @abstractmethod
    async def insert_professional(self, data: Row) -> Row:
        """Insert a professional record."""

    @abstractmethod
    async def delete_professional(self, professional_id: str) -> None:
        """Delete a professional record by id."""

    # -- Clinic <-> professional links ---------------------------------------

    @abstractmethod
    async def get_clinic_link(self, clinic_id: str, user_id: str) -> Row | None:
        """Fetch the link joining a clinic and an identity."""

    @abstractmethod
    async def insert_clinic_link(self, data: Row) -> Row:
        """Insert a clinic-professional link."""

    @abstractmethod
    async def delete_clinic_link(self, link_id: str) -> None:
        """Delete a clinic-professional link by id."""

    # -- Procedure templates --------------------------------------------------

    @abstractmethod
    async def list_templates(self, user_id: str) -> list[Row]:
        """List templates created by the identity."""

    @abstractmethod
    async def insert_templates(self, rows: list[Row]) -> list[Row]:
        """Insert several templates in one request."""

    @abstractmethod
    async def delete_templates(self, template_ids: list[str]) -> None:
        """Delete templates by id."""


class SupabaseClinicRepository(ClinicRepository):
    """ClinicRepository backed by Supabase/PostgREST tables."""

    def __init__(self, client: Client | None = None) -> None:
        """Initialize the repository.

        Args:
            client: Supabase client; resolved lazily from the singleton when omitted.
        """
        self._client = client

    @property
    def db(self) -> Client:
        """Get Supabase client lazily."""
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def _execute(self, action: str, table: str, query: Callable[[], Any]) -> Any:
        """Run one PostgREST request through the circuit breaker.

        Args:
            action: Short verb used in logs and error messages.
            table: Table being touched.
            query: Zero-argument callable building and executing the request.

        Returns:
            The response ``data`` payload, or ``None`` when there is none.

        Raises:
            ConflictError: On a unique-constraint violation.
            DatabaseError: On any other failure.
        """
        try:
            with _supabase_circuit_breaker.guard():
                response = query()
        except CircuitBreakerOpen:
            raise
        except APIError as e:
            if _is_unique_violation(e):
                raise ConflictError(f"Duplicate row in {table}", resource=table) from e
            logger.exception("Error executing %s on %s", action, table)
            raise DatabaseError(f"Failed to {action} {table}: {e.message}") from e
        except Exception as e:
            logger.exception("Error executing %s on %s", action, table)
            raise DatabaseError(f"Failed to {action} {table}: {e}") from e
        # maybe_single() yields no response object at all when nothing matches
        if response is None:
            return None
        return response.data

    def _first(self, data: Any) -> Row | None:
        if isinstance(data, list):
            return cast(Row, data[0]) if data else None
        return cast(Row | None, data)

    def _inserted(self, table: str, data: Any) -> Row:
        row = self._first(data)
        if row is None:
            raise DatabaseError(f"Insert into {table} returned no row")
        return row

    # -- Profiles -------------------------------------------------------------

    async def get_profile(self, user_id: str) -> Row | None:
        data = self._execute(
            "select",
            PROFILES_TABLE,
            lambda: self.db.table(PROFILES_TABLE)
            .select("*")
            .eq("id", user_id)
            .maybe_single()
            .execute(),
        )
        return self._first(data)

    async def upsert_profile(self, user_id: str, data: Row) -> Row:
        payload = {**data, "id": user_id}
        result = self._execute(
            "upsert",
            PROFILES_TABLE,
            lambda: self.db.table(PROFILES_TABLE).upsert(payload).execute(),
        )
        return self._inserted(PROFILES_TABLE, result)

    async def update_profile(self, user_id: str, data: Row) -> Row | None:
        result = self._execute(
            "update",
            PROFILES_TABLE,
            lambda: self.db.table(PROFILES_TABLE).update(data).eq("id", user_id).execute(),
        )
        return self._first(result)

    # -- Roles ----------------------------------------------------------------

    async def list_roles(self, user_id: str) -> list[Row]:
        data = self._execute(
            "select",
            ROLES_TABLE,
            lambda: self.db.table(ROLES_TABLE).select("*").eq("user_id", user_id).execute(),
        )
        return cast(list[Row], data or [])

    async def get_role(self, user_id: str, role: str) -> Row | None:
        data = self._execute(
            "select",
            ROLES_TABLE,
            lambda: self.db.table(ROLES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("role", role)
            .limit(1)
            .execute(),
        )
        return self._first(data)

    async def insert_role(self, data: Row) -> Row:
        result = self._execute(
            "insert",
            ROLES_TABLE,
            lambda: self.db.table(ROLES_TABLE).insert(data).execute(),
        )
        return self._inserted(ROLES_TABLE, result)

    async def update_role(self, role_id: str, data: Row) -> Row | None:
        result = self._execute(
            "update",
            ROLES_TABLE,
            lambda: self.db.table(ROLES_TABLE).update(data).eq("id", role_id).execute(),
        )
        return self._first(result)

    async def delete_role(self, role_id: str) -> None:
        self._execute(
            "delete",
            ROLES_TABLE,
            lambda: self.db.table(ROLES_TABLE).delete().eq("id", role_id).execute(),
        )

    # -- Clinics --------------------------------------------------------------

    async def get_clinic(self, clinic_id: str) -> Row | None:
        data = self._execute(
            "select",
            CLINICS_TABLE,
            lambda: self.db.table(CLINICS_TABLE)
            .select("*")
            .eq("id", clinic_id)
            .maybe_single()
            .execute(),
        )
        return self._first(data)

    async def insert_clinic(self, data: Row) -> Row:
        result = self._execute(
            "insert",
            CLINICS_TABLE,
            lambda: self.db.table(CLINICS_TABLE).insert(data).execute(),
        )
        return self._inserted(CLINICS_TABLE, result)

    async def delete_clinic(self, clinic_id: str) -> None:
        self._execute(
            "delete",
            CLINICS_TABLE,
            lambda: self.db.table(CLINICS_TABLE).delete().eq("id", clinic_id).execute(),
        )

    # -- Professionals --------------------------------------------------------

    async def get_professional(self, user_id: str) -> Row | None:
        data = self._execute(
            "select",
            PROFESSIONALS_TABLE,
            lambda: self.db.table(PROFESSIONALS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .maybe_single()
            .execute(),
        )
        return self._first(data)

    async def insert_professional(self, data: Row) -> Row:
        result = self._execute(
            "insert",
            PROFESSIONALS_TABLE,
            lambda: self.db.table(PROFESSIONALS_TABLE).insert(data).execute(),
        )
        return self._inserted(PROFESSIONALS_TABLE, result)

    async def delete_professional(self, professional_id: str) -> None:
        self._execute(
            "delete",
            PROFESSIONALS_TABLE,
            lambda: self.db.table(PROFESSIONALS_TABLE).delete().eq("id", professional_id).execute(),
        )

    # -- Clinic <-> professional links ---------------------------------------

    async def get_clinic_link(self, clinic_id: str, user_id: str) -> Row | None:
        data = self._execute(
            "select",
            CLINIC_LINKS_TABLE,
            lambda: self.db.table(CLINIC_LINKS_TABLE)
            .select("*")
            .eq("clinic_id", clinic_id)
            .eq("user_id", user_id)
            .maybe_single()
            .execute(),
        )
        return self._first(data)

    async def insert_clinic_link(self, data: Row) -> Row:
        result = self._execute(
            "insert",
            CLINIC_LINKS_TABLE,
            lambda: self.db.table(CLINIC_LINKS_TABLE).insert(data).execute(),
        )
        return self._inserted(CLINIC_LINKS_TABLE, result)

    async def delete_clinic_link(self, link_id: str) -> None:
        self._execute(
            "delete",
            CLINIC_LINKS_TABLE,
            lambda: self.db.table(CLINIC_LINKS_TABLE).delete().eq("id", link_id).execute(),
        )

    # -- Procedure templates --------------------------------------------------

    async def list_templates(self, user_id: str) -> list[Row]:
        data = self._execute(
            "select",
            TEMPLATES_TABLE,
            lambda: self.db.table(TEMPLATES_TABLE)
            .select("*")
            .eq("created_by", user_id)
            .execute(),
        )
        return cast(list[Row], data or [])

    async def insert_templates(self, rows: list[Row]) -> list[Row]:
        if not rows:
            return []
        data = self._execute(
            "insert",
            TEMPLATES_TABLE,
            lambda: self.db.table(TEMPLATES_TABLE).insert(rows).execute(),
        )
        return cast(list[Row], data or [])

    async def delete_templates(self, template_ids: list[str]) -> None:
        if not template_ids:
            return
        self._execute(
            "delete",
            TEMPLATES_TABLE,
            lambda: self.db.table(TEMPLATES_TABLE).delete().in_("id", template_ids).execute(),
        )


def get_clinic_repository() -> ClinicRepository:
    """Get the default repository for FastAPI dependency injection."""
    return SupabaseClinicRepository()
