"""
Error taxonomy for the staging pipeline.

Transient infrastructure errors (psycopg ``OperationalError`` and friends) are
not wrapped: they propagate to the job runner, which retries the task.
"""


class StagingError(Exception):
    """Base class for staging pipeline errors."""
    pass


class ConfigurationError(StagingError):
    """Raised when the staging configuration is missing or invalid."""
    pass


class MarshalError(StagingError):
    """
    Raised when a single resource snapshot cannot be rendered into a deposit.

    Attributes:
        resource_key: Key of the offending resource
        lenient: Best-effort rendering of the snapshot for the logs
    """

    def __init__(self, message: str, resource_key: str, lenient: str = ""):
        super().__init__(message)
        self.resource_key = resource_key
        self.lenient = lenient


class DepositValidationError(StagingError):
    """
    Raised when one or more snapshots of a deposit fail to marshal.

    The whole deposit is abandoned: nothing is written and the cursor is left
    where it was, so the next run retries the deposit from scratch.
    """

    def __init__(self, deposit: str, errors: list[MarshalError]):
        self.deposit = deposit
        self.errors = errors
        keys = ", ".join(e.resource_key for e in errors[:5])
        more = f" (+{len(errors) - 5} more)" if len(errors) > 5 else ""
        super().__init__(
            f"Deposit {deposit} has {len(errors)} invalid resource(s): {keys}{more}"
        )


class CursorConflictError(StagingError):
    """Raised when a cursor is asked to move backwards outside an operator command."""
    pass

