"""
Domain exceptions shared by the store, gateway, routes and backup job.
"""

from __future__ import annotations


class LabhubError(Exception):
    """Base class for errors raised by the backend."""


class ValidationError(LabhubError):
    """Missing or invalid input fields."""


class AuthError(LabhubError):
    """Unknown or inactive identity, or bad credentials."""


class StorageError(LabhubError):
    """The durable store could not complete an operation."""


class BackupError(LabhubError):
    """A snapshot could not be written to the external blob store."""
