"""Onboarding wizard, saga and integrity verification."""
