from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from chat_relay.errors import ChatStepError, UpstreamError, ValidationError
from chat_relay.schemas import ChatResponse, ConversationState, Message, UserState
from chat_relay.store import ConversationCache
from chat_relay.utils.botpress import BotpressClient
from chat_relay.utils.log import mask_secret
from chat_relay.utils.waiter import ResponseWaiter


logger = logging.getLogger("chat_relay.chat")

MAX_MESSAGE_LENGTH = 5000


class StepStatus(str, Enum):
    success = "success"
    degraded = "degraded"
    fatal = "fatal"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    value: Any = None
    error: Optional[Exception] = None


def validate_message(message: Any) -> str:
    """Return the trimmed message text or raise ValidationError."""
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Message is required", field="message", code="INVALID_MESSAGE")
    text = message.strip()
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message must be at most {MAX_MESSAGE_LENGTH} characters long",
            field="message",
            code="INVALID_MESSAGE",
        )
    return text


def _require(result: StepResult, code: str) -> Any:
    if result.status is StepStatus.fatal:
        raise ChatStepError(result.name, code, result.error) from result.error
    return result.value


class ChatRelay:
    """Runs one chat round trip: ensure user, ensure conversation, send, await reply, list history.

    User, conversation and send steps are fatal on upstream failure. Waiting for the reply and
    listing the history are best effort: their failures degrade to a null reply and an empty
    history.
    """

    def __init__(self, client: BotpressClient, cache: ConversationCache, waiter: ResponseWaiter) -> None:
        self._client = client
        self._cache = cache
        self._waiter = waiter

    async def _run_step(
        self,
        name: str,
        action: Callable[[], Awaitable[Any]],
        conversation_id: Optional[str] = None,
        required: bool = False,
        fallback: Any = None,
    ) -> StepResult:
        try:
            return StepResult(name, StepStatus.success, await action())
        except UpstreamError as exc:
            if required:
                logger.error("Step %s failed for conversation %s: %s", name, conversation_id, exc)
                return StepResult(name, StepStatus.fatal, error=exc)
            logger.warning("Step %s degraded for conversation %s: %s", name, conversation_id, exc)
            return StepResult(name, StepStatus.degraded, fallback, exc)

    async def _list_history(self, user_key: str, conversation_id: str) -> List[Message]:
        cached = await self._cache.get(conversation_id)
        if cached is not None:
            return cached
        listed = await self._client.list_messages(user_key, conversation_id)
        await self._cache.put(conversation_id, listed.messages)
        return listed.messages

    async def handle_message(
        self,
        message: Any,
        user_key: Optional[str] = None,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> ChatResponse:
        text = validate_message(message)
        logger.info(
            "Chat request: conversation=%s, user key=%s, %d chars",
            conversation_id, mask_secret(user_key), len(text),
        )

        if not user_key:
            created = await self._run_step("create_user", self._client.create_user, required=True)
            user = _require(created, "USER_CREATION_FAILED")
            user_key = user.key
            user_id = user.user.id

        if not conversation_id:
            created = await self._run_step(
                "create_conversation",
                lambda: self._client.create_conversation(user_key),
                required=True,
            )
            conversation_id = _require(created, "CONVERSATION_CREATION_FAILED").id

        sent = await self._run_step(
            "send_message",
            lambda: self._client.send_message(user_key, conversation_id, text),
            conversation_id=conversation_id,
            required=True,
        )
        sent_message = _require(sent, "MESSAGE_SEND_FAILED")

        reply = await self._run_step(
            "await_reply",
            lambda: self._waiter.wait_for_reply(user_key, conversation_id, sent_message.message.id),
            conversation_id=conversation_id,
        )
        history = await self._run_step(
            "list_history",
            lambda: self._list_history(user_key, conversation_id),
            conversation_id=conversation_id,
            fallback=[],
        )

        return ChatResponse(
            message=sent_message,
            botResponse=reply.value,
            conversation=ConversationState(id=conversation_id, isStarted=True),
            messages=history.value,
            user=UserState(key=user_key, id=user_id),
        )
