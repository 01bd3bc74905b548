"""Caller identity and role checks."""
