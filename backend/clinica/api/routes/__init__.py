"""API route handlers for the clinic backend."""

from clinica.api.routes import health as health
from clinica.api.routes import integrity as integrity
from clinica.api.routes import onboarding as onboarding
