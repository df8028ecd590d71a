from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as SchemaError

from chat_relay.errors import UpstreamError
from chat_relay.schemas import CreatedUser, Conversation, MessageList, SentMessage
from chat_relay.store import ConversationCache
from chat_relay.utils.log import mask_secret


logger = logging.getLogger("chat_relay.botpress")

USER_KEY_HEADER = "x-user-key"


class BotpressClient:
    """Thin async client for the chat platform's webhook API.

    One HTTP round trip per call, no retries. Every failure surfaces as UpstreamError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        cache: Optional[ConversationCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._cache = cache
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        user_key: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {USER_KEY_HEADER: user_key} if user_key else None
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error("%s: chat platform returned %s (user key %s)", operation, status, mask_secret(user_key))
            raise UpstreamError(f"{operation} failed: {_error_detail(exc.response)}", upstream_status=status) from exc
        except httpx.RequestError as exc:
            logger.error("%s: chat platform unreachable: %s", operation, exc)
            raise UpstreamError(f"{operation} failed: {exc.__class__.__name__}: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"{operation} failed: response is not JSON", upstream_status=response.status_code) from exc

    async def create_user(self) -> CreatedUser:
        data = await self._request("POST", "/users", "create user", json={})
        try:
            created = CreatedUser.model_validate(data)
        except SchemaError as exc:
            raise UpstreamError("create user failed: invalid user creation response") from exc
        logger.info("Created user %s (key %s)", created.user.id, mask_secret(created.key))
        return created

    async def create_conversation(self, user_key: str) -> Conversation:
        data = await self._request("POST", "/conversations", "create conversation", user_key=user_key, json={})
        conversation = data.get("conversation") if isinstance(data, dict) else None
        if not isinstance(conversation, dict) or not conversation.get("id"):
            logger.error("Invalid conversation response: %s", data)
            raise UpstreamError("create conversation failed: invalid conversation creation response")
        try:
            created = Conversation.model_validate(conversation)
        except SchemaError as exc:
            logger.error("Invalid conversation response: %s", data)
            raise UpstreamError("create conversation failed: invalid conversation creation response") from exc
        logger.info("Created conversation %s", created.id)
        return created

    async def send_message(self, user_key: str, conversation_id: str, text: str) -> SentMessage:
        body = {"payload": {"type": "text", "text": text}, "conversationId": conversation_id}
        logger.info("Sending message to conversation %s (%d chars)", conversation_id, len(text))
        data = await self._request("POST", "/messages", "send message", user_key=user_key, json=body)
        try:
            sent = SentMessage.model_validate(data)
        except SchemaError as exc:
            raise UpstreamError("send message failed: invalid message response") from exc

        if self._cache is not None:
            await self._cache.invalidate(conversation_id)
        logger.info("Message %s sent to conversation %s", sent.message.id, conversation_id)
        return sent

    async def list_messages(self, user_key: str, conversation_id: str) -> MessageList:
        data = await self._request(
            "GET", f"/conversations/{conversation_id}/messages", "list messages", user_key=user_key
        )
        try:
            listed = MessageList.model_validate(data)
        except SchemaError as exc:
            raise UpstreamError("list messages failed: invalid message list response") from exc
        listed.messages.sort(key=lambda m: m.created_at)
        return listed


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return response.reason_phrase or f"HTTP {response.status_code}"
