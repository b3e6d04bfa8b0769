"""Live update envelope shared by the bus, the Redis relay and SSE."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class UpdateType(str, Enum):
    COMMITMENT = "commitment"
    MILESTONE = "milestone"
    ACHIEVEMENT = "achievement"


class UpdateEvent(BaseModel):
    type: UpdateType
    topic: str  # "event:<id>" or "global"
    payload: dict[str, Any] = Field(default_factory=dict)
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_sse(self) -> str:
        return f"id: {self.id}\nevent: {self.type.value}\ndata: {self.model_dump_json()}\n\n"
