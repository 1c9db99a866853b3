from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from demo_intake.schemas.session import Message
from demo_intake.util.time import elapsed_whole_seconds

EVENT_CONVERSATION_STARTED = "conversation.started"
EVENT_CONVERSATION_UPDATED = "conversation.updated"
EVENT_CONVERSATION_ENDED = "conversation.ended"
EVENT_REPLICA_JOINED = "system.replica_joined"
EVENT_SYSTEM_SHUTDOWN = "system.shutdown"
EVENT_TRANSCRIPTION_READY = "application.transcription_ready"
EVENT_PERCEPTION_ANALYSIS = "application.perception_analysis"

ENDED_EVENTS = frozenset({EVENT_CONVERSATION_ENDED, EVENT_SYSTEM_SHUTDOWN})
STARTED_EVENTS = frozenset({EVENT_CONVERSATION_STARTED, EVENT_REPLICA_JOINED})

CONVERSATION_STATUS_ENDED = "ended"


class TavusWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    conversation_id: str = Field(default="")
    event_type: str = Field(default="")
    status: Optional[str] = Field(default=None)
    timestamp: Optional[str] = Field(default=None)
    data: dict[str, Any] = Field(default_factory=dict)
    # The provider nests event details under "properties"; "data" is accepted too.
    properties: dict[str, Any] = Field(default_factory=dict)

    def details(self) -> dict[str, Any]:
        merged = dict(self.properties)
        merged.update(self.data)
        return merged


class VerboseConversation(BaseModel):
    """What the intake pipeline needs from a verbose conversation read."""

    conversation_id: str
    status: Optional[str] = Field(default=None)
    # None means the provider returned no transcript field; [] means an empty one.
    transcript: Optional[list[Message]] = Field(default=None)
    shutdown_reason: Optional[str] = Field(default=None)
    perception_analysis: Optional[str] = Field(default=None)
    replica_joined_at: Optional[str] = Field(default=None)
    shutdown_at: Optional[str] = Field(default=None)

    @property
    def has_transcript(self) -> bool:
        return bool(self.transcript)

    @property
    def duration_seconds(self) -> Optional[int]:
        if not self.replica_joined_at or not self.shutdown_at:
            return None
        return elapsed_whole_seconds(self.replica_joined_at, self.shutdown_at)
