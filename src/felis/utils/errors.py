class IngestError(Exception):
    """Base class for failures raised by the session store."""


class InvalidPayload(IngestError):
    """Input is malformed or incomplete. Never reaches storage, never retried."""


class StorageUnavailable(IngestError):
    """The database could not be reached or did not answer in time. Safe to retry."""


class InternalError(IngestError):
    """Unclassified storage failure."""


__all__ = ["IngestError", "InvalidPayload", "StorageUnavailable", "InternalError"]
