"""Storage failures raised by the repositories.

Repositories translate SQLAlchemy errors into these so that the ceremonies
can tell "storage is down" apart from "the row says no" without importing
driver exceptions.
"""


class DatabaseError(Exception):
    """A repository call failed for a reason other than connectivity."""


class DuplicateRecordError(DatabaseError):
    """A unique column (user email, passkey credential id, challenge value) already holds the value."""


class ConnectionError(DatabaseError):
    """The database could not be reached, or the engine was never initialized."""
