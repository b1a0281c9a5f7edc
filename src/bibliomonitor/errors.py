from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    SOURCE_NOT_CONFIGURED = "SOURCE_NOT_CONFIGURED"
    SOURCE_FETCH_FAILED = "SOURCE_FETCH_FAILED"
    SOURCE_PAYLOAD_INVALID = "SOURCE_PAYLOAD_INVALID"
    NO_INSTANCES_UP = "NO_INSTANCES_UP"
    API_CHECK_NOT_CONFIGURED = "API_CHECK_NOT_CONFIGURED"


class MonitorError(Exception):
    """Raised for all expected failure conditions on the read path.

    Caught by server.py and serialised into the JSON error envelope.
    Producers raise it through the read-through cache unchanged, so a
    cache-miss caller sees exactly the failure the producer raised.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
