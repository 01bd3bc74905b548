"""Audit trail for moderation admin actions."""
