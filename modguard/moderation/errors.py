"""Exception taxonomy for the moderation core.

Only ``ValidationError``, ``NotFoundError``, ``AlreadyReviewedError`` and
``StoreCorruptedError`` are ever surfaced to API callers.
``DependencyUnavailableError`` and ``ConfigurationError`` are raised by the
external clients and absorbed by the tiers, which degrade instead of
failing the request.
"""

from __future__ import annotations


class ModerationError(Exception):
    """Base class for every moderation error."""


class ValidationError(ModerationError):
    """A configuration document failed validation.

    ``errors`` lists every violation found, not just the first one.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        summary = "; ".join(self.errors[:3])
        if len(self.errors) > 3:
            summary += f" (+{len(self.errors) - 3} more)"
        super().__init__(f"Invalid moderation config: {summary}")


class NotFoundError(ModerationError):
    """No queue item (or user record) exists for the given id."""

    def __init__(self, item_id: str, kind: str = "Queue item") -> None:
        self.item_id = item_id
        self.kind = kind
        super().__init__(f"{kind} '{item_id}' not found")


class AlreadyReviewedError(ModerationError):
    """The queue item has already left the ``pending`` state."""

    def __init__(self, item_id: str, status: str) -> None:
        self.item_id = item_id
        self.status = status
        super().__init__(f"Queue item '{item_id}' was already {status}")


class DependencyUnavailableError(ModerationError):
    """An external service (reputation lookup, classifier) could not answer."""

    def __init__(self, service: str, detail: str = "") -> None:
        self.service = service
        self.detail = detail
        msg = f"{service} unavailable"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ConfigurationError(ModerationError):
    """A tier or client is missing the configuration it needs to run."""


class StoreCorruptedError(ModerationError):
    """A persisted store file exists but cannot be parsed.

    Writers refuse to touch the file so that no record is overwritten.
    """

    def __init__(self, path: str, detail: str = "") -> None:
        self.path = path
        self.detail = detail
        msg = f"Store file {path} is unreadable"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
