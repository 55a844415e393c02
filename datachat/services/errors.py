"""Error taxonomy for connection resolution, SQL generation and execution."""


class NLQError(Exception):
    """Base class for natural-language-query failures."""


class ConnectionNotFound(NLQError):
    """No connection row matches the id for this user."""


class Unauthorized(NLQError):
    """The user does not own the chat or connection."""


class DialectMismatch(NLQError):
    """Stored dialect tag differs from the manager's dialect."""

    def __init__(self, expected: str, actual: str | None):
        super().__init__(f"Connection is not a {expected} database (found {actual or 'none'})")
        self.expected = expected
        self.actual = actual


class ConnectionTestFailed(NLQError):
    """Pool was created but the liveness probe failed."""


class NotInitialized(NLQError):
    """Query attempted before a successful initialize()."""


class GenerationFailed(NLQError):
    """Language model produced no usable SQL."""


class QueryExecutionError(NLQError):
    """Driver rejected a statement. Managers convert this to an empty result."""


class SchemaFetchFailed(NLQError):
    """Information-schema introspection failed. Logged, never propagated."""
