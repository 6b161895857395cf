"""Clinic onboarding backend: wizard state machine, onboarding saga and integrity verifier."""
