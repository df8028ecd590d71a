from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from chat_relay.schemas import Message


BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
PLATFORM_URL = "https://chat.test/hook"


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_message(
    message_id: str,
    seconds: float,
    text: str = "hi",
    user_id: str = "user-1",
    conversation_id: str = "conv-1",
) -> Message:
    return Message.model_validate(
        {
            "id": message_id,
            "createdAt": (BASE_TIME + timedelta(seconds=seconds)).isoformat(),
            "conversationId": conversation_id,
            "userId": user_id,
            "payload": {"type": "text", "text": text},
        }
    )


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakePlatform:
    """In-process stand-in for the chat platform, served through httpx.MockTransport.

    The bot posts its reply when the conversation has been listed `reply_on_list` times.
    Operations named in `failures` answer with HTTP 500; `fail_list_from` makes every
    list call from that (1-based) call onwards fail. `conversation_override` replaces the
    created conversation body.
    """

    def __init__(self, reply_on_list: Optional[int] = 2, reply_text: str = "Hello from the bot") -> None:
        self.calls: List[Dict[str, Any]] = []
        self.messages: List[Dict[str, Any]] = []
        self.reply_on_list = reply_on_list
        self.reply_text = reply_text
        self.failures: set = set()
        self.fail_list_from: Optional[int] = None
        self.conversation_override: Optional[Dict[str, Any]] = None
        self.list_calls = 0
        self._clock = 0

    def _stamp(self) -> str:
        self._clock += 1
        return (BASE_TIME + timedelta(seconds=self._clock)).isoformat()

    def _message(self, text: str, user_id: str, conversation_id: str) -> Dict[str, Any]:
        message = {
            "id": f"msg-{len(self.messages) + 1}",
            "createdAt": self._stamp(),
            "conversationId": conversation_id,
            "userId": user_id,
            "payload": {"type": "text", "text": text},
        }
        self.messages.append(message)
        return message

    def operations(self) -> List[str]:
        return [call["operation"] for call in self.calls]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/hook")
        body = json.loads(request.content) if request.content else None
        if request.method == "POST" and path == "/users":
            operation = "create_user"
        elif request.method == "POST" and path == "/conversations":
            operation = "create_conversation"
        elif request.method == "POST" and path == "/messages":
            operation = "send_message"
        elif request.method == "GET" and path.endswith("/messages"):
            operation = "list_messages"
        else:
            return httpx.Response(404, json={"message": "not found"})

        self.calls.append(
            {"operation": operation, "user_key": request.headers.get("x-user-key"), "body": body}
        )
        if operation in self.failures:
            return httpx.Response(500, json={"message": "platform exploded"})

        if operation == "create_user":
            return httpx.Response(200, json={"key": "secret-session-key-123", "user": {"id": "user-1"}})
        if operation == "create_conversation":
            if self.conversation_override is not None:
                return httpx.Response(200, json={"conversation": self.conversation_override})
            stamp = self._stamp()
            return httpx.Response(
                200, json={"conversation": {"id": "conv-1", "createdAt": stamp, "updatedAt": stamp}}
            )
        if operation == "send_message":
            message = self._message(body["payload"]["text"], "user-1", body["conversationId"])
            return httpx.Response(200, json={"message": message})

        self.list_calls += 1
        if self.fail_list_from is not None and self.list_calls >= self.fail_list_from:
            return httpx.Response(503, json={"message": "listing unavailable"})
        if self.reply_on_list is not None and self.list_calls == self.reply_on_list and self.messages:
            self._message(self.reply_text, "bot-1", self.messages[-1]["conversationId"])
        return httpx.Response(200, json={"messages": list(self.messages), "meta": {}})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
