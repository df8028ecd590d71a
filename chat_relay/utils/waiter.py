from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, List, Optional

from chat_relay.schemas import Message
from chat_relay.store import ConversationCache
from chat_relay.utils.botpress import BotpressClient
from chat_relay.utils.env import WaitPolicy


logger = logging.getLogger("chat_relay.waiter")


def backoff_delay(
    attempt: int,
    policy: WaitPolicy,
    uniform: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay in seconds before poll `attempt` (0-indexed).

    initial * multiplier**attempt, capped at max_delay, plus up to jitter_ratio of that
    value added on top. Jitter is never subtracted.
    """
    delay = min(policy.initial_delay * (policy.multiplier ** attempt), policy.max_delay)
    return delay + uniform(0, policy.jitter_ratio * delay)


class ResponseWaiter:
    """Polls a conversation until the bot answers a given user message.

    Gives up, returning None, after `max_attempts` polls or once the conversation's message
    count has stayed the same for `max_unchanged_polls` consecutive polls. Upstream failures
    are not swallowed here.
    """

    def __init__(
        self,
        client: BotpressClient,
        cache: ConversationCache,
        policy: Optional[WaitPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._cache = cache
        self._policy = policy or WaitPolicy()
        self._sleep = sleep
        self._uniform = uniform
        self._clock = clock

    async def _fetch(self, user_key: str, conversation_id: str) -> List[Message]:
        cached = await self._cache.get(conversation_id)
        if cached is not None:
            return cached
        listed = await self._client.list_messages(user_key, conversation_id)
        return listed.messages

    async def wait_for_reply(self, user_key: str, conversation_id: str, sent_message_id: str) -> Optional[Message]:
        policy = self._policy
        started = self._clock()
        last_count: Optional[int] = None
        unchanged = 0

        for attempt in range(policy.max_attempts):
            await self._sleep(backoff_delay(attempt, policy, self._uniform))
            messages = await self._fetch(user_key, conversation_id)
            elapsed = self._clock() - started
            logger.debug(
                "Poll %d/%d for conversation %s: %d messages after %.1fs",
                attempt + 1, policy.max_attempts, conversation_id, len(messages), elapsed,
            )

            sent = next((m for m in messages if m.id == sent_message_id), None)
            if sent is None:
                continue

            if len(messages) == last_count:
                unchanged += 1
                if unchanged >= policy.max_unchanged_polls:
                    logger.info(
                        "No new messages in conversation %s for %d polls, giving up after %d attempts (%.1fs)",
                        conversation_id, unchanged, attempt + 1, elapsed,
                    )
                    return None
            else:
                unchanged = 0
                last_count = len(messages)

            later = [m for m in messages if m.id != sent.id and m.created_at > sent.created_at]
            if later:
                reply = min(later, key=lambda m: m.created_at)
                await self._cache.put(conversation_id, messages)
                logger.info(
                    "Bot replied in conversation %s on attempt %d (%.1fs)",
                    conversation_id, attempt + 1, elapsed,
                )
                return reply

        logger.info(
            "No bot reply in conversation %s after %d attempts (%.1fs)",
            conversation_id, policy.max_attempts, self._clock() - started,
        )
        return None
