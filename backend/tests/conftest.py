"""Shared fixtures: an in-memory store enforcing the onboarding unique constraints."""

from __future__ import annotations

import copy
import uuid
from typing import Any

import pytest

from clinica.core.exceptions import ConflictError
from clinica.db.clinic_repository import ClinicRepository

Row = dict[str, Any]


class InMemoryClinicRepository(ClinicRepository):
    """ClinicRepository over plain dicts.

    Mirrors the store's unique constraints: one role per (user_id, role),
    one professional per user_id and one link per (clinic_id, user_id).
    Any operation can be made to raise by putting an exception in
    ``fail_on`` under the method name.
    """

    def __init__(self) -> None:
        self.profiles: dict[str, Row] = {}
        self.roles: dict[str, Row] = {}
        self.clinics: dict[str, Row] = {}
        self.professionals: dict[str, Row] = {}
        self.links: dict[str, Row] = {}
        self.templates: dict[str, Row] = {}
        self.fail_on: dict[str, Exception] = {}
        self.calls: list[str] = []

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise self.fail_on[operation]

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # -- Profiles -------------------------------------------------------------

    async def get_profile(self, user_id: str) -> Row | None:
        self._enter("get_profile")
        row = self.profiles.get(user_id)
        return copy.deepcopy(row) if row else None

    async def upsert_profile(self, user_id: str, data: Row) -> Row:
        self._enter("upsert_profile")
        row = {**self.profiles.get(user_id, {}), **data, "id": user_id}
        self.profiles[user_id] = row
        return copy.deepcopy(row)

    async def update_profile(self, user_id: str, data: Row) -> Row | None:
        self._enter("update_profile")
        if user_id not in self.profiles:
            return None
        self.profiles[user_id].update(data)
        return copy.deepcopy(self.profiles[user_id])

    # -- Roles ----------------------------------------------------------------

    async def list_roles(self, user_id: str) -> list[Row]:
        self._enter("list_roles")
        return [copy.deepcopy(r) for r in self.roles.values() if r["user_id"] == user_id]

    async def get_role(self, user_id: str, role: str) -> Row | None:
        self._enter("get_role")
        for row in self.roles.values():
            if row["user_id"] == user_id and row["role"] == role:
                return copy.deepcopy(row)
        return None

    async def insert_role(self, data: Row) -> Row:
        self._enter("insert_role")
        for row in self.roles.values():
            if row["user_id"] == data["user_id"] and row["role"] == data["role"]:
                raise ConflictError("Duplicate row in user_roles", resource="user_roles")
        row = {**data, "id": self._new_id()}
        self.roles[row["id"]] = row
        return copy.deepcopy(row)

    async def update_role(self, role_id: str, data: Row) -> Row | None:
        self._enter("update_role")
        if role_id not in self.roles:
            return None
        self.roles[role_id].update(data)
        return copy.deepcopy(self.roles[role_id])

    async def delete_role(self, role_id: str) -> None:
        self._enter("delete_role")
        self.roles.pop(role_id, None)

    # -- Clinics --------------------------------------------------------------

    async def get_clinic(self, clinic_id: str) -> Row | None:
        self._enter("get_clinic")
        row = self.clinics.get(clinic_id)
        return copy.deepcopy(row) if row else None

    async def insert_clinic(self, data: Row) -> Row:
        self._enter("insert_clinic")
        row = {**data, "id": self._new_id()}
        self.clinics[row["id"]] = row
        return copy.deepcopy(row)

    async def delete_clinic(self, clinic_id: str) -> None:
        self._enter("delete_clinic")
        self.clinics.pop(clinic_id, None)

    # -- Professionals --------------------------------------------------------

    async def get_professional(self, user_id: str) -> Row | None:
        self._enter("get_professional")
        for row in self.professionals.values():
            if row["user_id"] == user_id:
                return copy.deepcopy(row)
        return None

    async def insert_professional(self, data: Row) -> Row:
        self._enter("insert_professional")
        if any(r["user_id"] == data["user_id"] for r in self.professionals.values()):
            raise ConflictError("Duplicate row in professionals", resource="professionals")
        row = {**data, "id": self._new_id()}
        self.professionals[row["id"]] = row
        return copy.deepcopy(row)

    async def delete_professional(self, professional_id: str) -> None:
        self._enter("delete_professional")
        self.professionals.pop(professional_id, None)

    # -- Clinic links ---------------------------------------------------------

    async def get_clinic_link(self, clinic_id: str, user_id: str) -> Row | None:
        self._enter("get_clinic_link")
        for row in self.links.values():
            if row["clinic_id"] == clinic_id and row["user_id"] == user_id:
                return copy.deepcopy(row)
        return None

    async def insert_clinic_link(self, data: Row) -> Row:
        self._enter("insert_clinic_link")
        for row in self.links.values():
            if row["clinic_id"] == data["clinic_id"] and row["user_id"] == data["user_id"]:
                raise ConflictError(
                    "Duplicate row in clinic_professionals", resource="clinic_professionals"
                )
        row = {**data, "id": self._new_id()}
        self.links[row["id"]] = row
        return copy.deepcopy(row)

    async def delete_clinic_link(self, link_id: str) -> None:
        self._enter("delete_clinic_link")
        self.links.pop(link_id, None)

    # -- Templates ------------------------------------------------------------

    async def list_templates(self, user_id: str) -> list[Row]:
        self._enter("list_templates")
        return [copy.deepcopy(t) for t in self.templates.values() if t["created_by"] == user_id]

    async def insert_templates(self, rows: list[Row]) -> list[Row]:
        self._enter("insert_templates")
        inserted = []
        for data in rows:
            row = {**data, "id": self._new_id()}
            self.templates[row["id"]] = row
            inserted.append(copy.deepcopy(row))
        return inserted

    async def delete_templates(self, template_ids: list[str]) -> None:
        self._enter("delete_templates")
        for template_id in template_ids:
            self.templates.pop(template_id, None)

    # -- Seeding helpers ------------------------------------------------------

    def seed_complete_user(self, user_id: str = "user-123", **profile: Any) -> str:
        """Store a fully onboarded user and return their clinic id."""
        clinic_id = self._new_id()
        self.profiles[user_id] = {
            "id": user_id,
            "full_name": "Ana Souza",
            "email": "ana@x.com",
            "phone": "+55 11 99999-0000",
            "first_access": False,
            "onboarding_completed_at": "2026-01-01T12:00:00+00:00",
            "active": True,
            **profile,
        }
        role_id = self._new_id()
        self.roles[role_id] = {
            "id": role_id,
            "user_id": user_id,
            "role": "owner",
            "clinic_id": clinic_id,
            "active": True,
        }
        self.clinics[clinic_id] = {
            "id": clinic_id,
            "name": "Clínica Ana",
            "tax_id": "12.345.678/0001-90",
            "phone": "+55 11 3333-0000",
            "email": "contato@clinica-ana.com",
            "address": {"city": "São Paulo", "state": "SP"},
            "owner_id": user_id,
            "active": True,
        }
        professional_id = self._new_id()
        self.professionals[professional_id] = {
            "id": professional_id,
            "user_id": user_id,
            "specialties": ["facial"],
            "active": True,
        }
        link_id = self._new_id()
        self.links[link_id] = {
            "id": link_id,
            "clinic_id": clinic_id,
            "user_id": user_id,
            "title": "Owner",
            "can_create_records": True,
            "can_edit_records": True,
            "can_view_finance": True,
            "active": True,
        }
        template_id = self._new_id()
        self.templates[template_id] = {
            "id": template_id,
            "procedure_type": "skin_cleansing",
            "name": "Basic skin cleansing",
            "default_duration_minutes": 60,
            "base_price": 80.0,
            "created_by": user_id,
            "active": True,
        }
        return clinic_id


@pytest.fixture
def repository() -> InMemoryClinicRepository:
    """Empty in-memory store."""
    return InMemoryClinicRepository()
