"""Domain exceptions raised by the scheduler and its storage adapters."""


class CadenceError(Exception):
    """Base class for all Cadence errors."""


class InvalidInputError(CadenceError, ValueError):
    """A learner or card identifier (or the attempt outcome) is missing or malformed.

    Raised before any storage access, so nothing has been written.
    """


class PersistenceError(CadenceError):
    """The storage layer failed (write conflict, locked or unavailable database).

    Recoverable from the caller's point of view: the transaction was rolled
    back and the attempt can be resubmitted.
    """
