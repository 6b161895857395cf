"""Database clients and repositories."""

from clinica.db.clinic_repository import (
    ClinicRepository,
    SupabaseClinicRepository,
    get_clinic_repository,
)
from clinica.db.supabase import SupabaseClient, get_supabase_client

__all__ = [
    "ClinicRepository",
    "SupabaseClient",
    "SupabaseClinicRepository",
    "get_clinic_repository",
    "get_supabase_client",
]
