"""Exception hierarchy for TripNotes.

Only store, authorization and validation errors ever reach callers of the
service. Transport errors are raised by the KV transports and absorbed by
the cache layer.
"""

from __future__ import annotations


class TripNotesError(Exception):
    """Base class for all TripNotes errors."""


class KvTransportError(TripNotesError):
    """The KV store could not be reached or answered with a non-2xx status."""

    def __init__(self, operation: str, key: str | None, detail: str):
        self.operation = operation
        self.key = key
        self.detail = detail
        target = f" {key}" if key else ""
        super().__init__(f"KV {operation}{target} failed: {detail}")


class TripNotFoundError(TripNotesError):
    """The requested trip (or fragment) does not exist in the store."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class AuthorizationError(TripNotesError):
    """The caller does not own the trip it is trying to modify."""

    def __init__(self, document_id: str, user_id: str | None):
        self.document_id = document_id
        self.user_id = user_id
        super().__init__(f"user {user_id!r} may not modify trip {document_id}")


class InvalidChangeError(TripNotesError):
    """A change bundle or field edit cannot be applied as given."""


class UnresolvedProvisionalIdError(InvalidChangeError):
    """A provisional id was referenced before its fragment was persisted."""

    def __init__(self, local_id: str):
        self.local_id = local_id
        super().__init__(f"provisional id {local_id!r} has no durable id yet")
