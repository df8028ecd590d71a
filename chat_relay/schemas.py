from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class UpstreamModel(BaseModel):
    # Fields the platform adds later are passed through to the widget untouched.
    model_config = ConfigDict(extra="allow")


class MessagePayload(UpstreamModel):
    type: str = "text"
    text: Optional[str] = None


class Message(UpstreamModel):
    id: str
    createdAt: str
    conversationId: str
    userId: Optional[str] = None
    payload: MessagePayload

    @field_validator("createdAt")
    @classmethod
    def _check_timestamp(cls, value: str) -> str:
        _parse_timestamp(value)
        return value

    @property
    def created_at(self) -> datetime:
        return _parse_timestamp(self.createdAt)


class SentMessage(UpstreamModel):
    message: Message


class User(UpstreamModel):
    id: str
    key: Optional[str] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class CreatedUser(BaseModel):
    key: str
    user: User


class Conversation(UpstreamModel):
    id: str
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class MessageList(UpstreamModel):
    messages: List[Message] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    message: Optional[str] = None
    userId: Optional[str] = None
    conversationId: Optional[str] = None


class ConversationState(BaseModel):
    id: str
    isStarted: bool = True


class UserState(BaseModel):
    key: str
    id: Optional[str] = None


class ChatResponse(BaseModel):
    message: SentMessage
    botResponse: Optional[Message] = None
    conversation: ConversationState
    messages: List[Message] = Field(default_factory=list)
    user: UserState


class ContactRequest(BaseModel):
    # Types are checked by validate_contact_form so every contact error names its field
    name: Optional[Any] = None
    email: Optional[Any] = None
    message: Optional[Any] = None
