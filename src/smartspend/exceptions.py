"""Custom exceptions for the smartspend receipt core."""


class SmartSpendError(Exception):
    """Base exception for all smartspend errors."""


class InputValidationError(SmartSpendError, ValueError):
    """Raised when a required argument is missing, blank or malformed.

    This is a programmer-error class failure (e.g. a blank product name handed
    to the matcher) and is always surfaced to the caller.
    """


class CollaboratorUnavailable(SmartSpendError):
    """Base exception for I/O failures of an external collaborator."""


class StorageError(CollaboratorUnavailable):
    """Raised when the storage collaborator fails to read or write."""


class CatalogUnavailable(CollaboratorUnavailable):
    """Raised when the remote product catalog cannot be reached."""
