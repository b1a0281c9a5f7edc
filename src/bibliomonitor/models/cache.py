from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """Value as held by the keyed store, plus the time it was written."""

    value: bytes  # JSON-encoded payload
    stored_at: datetime
