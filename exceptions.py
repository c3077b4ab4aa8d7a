"""Errors raised while reconciling contact identities."""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class InvalidRequest(ReconciliationError):
    """Raised when a request carries neither an email nor a phone number."""

    pass


class PersistenceFailure(ReconciliationError):
    """Raised when a repository call fails."""

    pass


class ClusterIntegrityError(ReconciliationError):
    """Raised when matched contacts have no primary to consolidate under."""

    pass
