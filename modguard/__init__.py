"""modguard -- tiered content moderation pipeline for community platforms."""

__version__ = "0.1.0"
