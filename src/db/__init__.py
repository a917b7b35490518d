"""Database package for sqltabs.

Collaborators the session engine talks to: the connection directory, the schema browser
and the query executor.
"""

__all__ = [
    "connection",
    "executor",
    "metadata",
]
