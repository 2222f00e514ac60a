"""Message and turn schemas used by the memory engine.

StoredMessage is the read-side view of one row of the message store. Turns are
derived from stored messages on every read and are never persisted.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

MessageRole = Literal["user", "assistant"]


class StoredMessage(BaseModel):
    """A user or assistant entry read from the message store.

    Fields:
        message_id: Opaque stable id (used as the memory cursor)
        role: user or assistant
        content: Message text
        metadata: Free-form metadata; may carry the model variant tag
        created_at: Write timestamp, defines conversation order
    """

    message_id: str = Field(..., description="Opaque stable message id")
    role: MessageRole = Field(..., description="Message role")
    content: str = Field(default="", description="Message text")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Optional metadata")
    created_at: datetime | None = Field(default=None, description="Write timestamp")

    @field_validator("message_id", mode="before")
    @classmethod
    def coerce_message_id(cls, v: object) -> str:
        """Numeric ids are stored as strings so they can be used as cursors."""
        return str(v)

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, v: object) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, v: object) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @property
    def model_variant(self) -> str | None:
        """Model/mode that produced this entry, if recorded."""
        variant = self.metadata.get("model_variant") or self.metadata.get("modelVariant")
        return str(variant) if variant else None


@dataclass(frozen=True)
class Turn:
    """One user entry paired with the following assistant entry.

    Either side may be missing for entries that do not strictly alternate.
    """

    user: StoredMessage | None = None
    assistant: StoredMessage | None = None

    @property
    def user_text(self) -> str:
        return self.user.content if self.user else ""

    @property
    def assistant_text(self) -> str:
        return self.assistant.content if self.assistant else ""

    @property
    def assistant_message_id(self) -> str | None:
        return self.assistant.message_id if self.assistant else None

    @property
    def variant(self) -> str | None:
        return self.assistant.model_variant if self.assistant else None
