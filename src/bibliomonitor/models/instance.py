from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, JsonValue

_ERROR_STATUS = re.compile(r"^error \((\d{3})\)$")


class InstanceStatus(StrEnum):
    UP = "up"
    DOWN = "down"  # Transport-level failure only: timeout, refused, abort


def error_status(status_code: int) -> str:
    """Status tag for an instance that answered with a non-ok HTTP status."""
    return f"error ({status_code})"


class Instance(BaseModel):
    """Single mirror instance from the registry, optionally probed."""

    # Registry records may carry extra fields; keep them for the raw listing.
    model_config = ConfigDict(extra="allow")

    url: str
    # Probing always sets a str; registry values of any JSON type pass through
    status: JsonValue = None
    note: str | None = None
    error: str | None = None

    @property
    def is_up(self) -> bool:
        return self.status == InstanceStatus.UP

    @property
    def is_down(self) -> bool:
        return self.status == InstanceStatus.DOWN or self.error_code is not None

    @property
    def error_code(self) -> int | None:
        if not isinstance(self.status, str):
            return None
        match = _ERROR_STATUS.match(self.status)
        return int(match.group(1)) if match else None
