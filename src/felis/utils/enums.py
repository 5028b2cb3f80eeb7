from enum import StrEnum


class SessionOrigin(StrEnum):
    INCREMENTAL = "incremental"
    ONE_SHOT = "one_shot"


class SessionState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class AppendStatus(StrEnum):
    ACKNOWLEDGED = "acknowledged"
    NOT_FOUND = "not_found"


class HealthStatus(StrEnum):
    OK = "OK"
    ERROR = "Error"


class FlushOutcome(StrEnum):
    ACKNOWLEDGED = "acknowledged"
    NOT_FOUND = "not_found"
    RETRY = "retry"
    REJECTED = "rejected"
    SKIPPED = "skipped"


__all__ = ["SessionOrigin", "SessionState", "AppendStatus", "HealthStatus", "FlushOutcome"]
