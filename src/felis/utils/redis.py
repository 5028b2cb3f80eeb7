import asyncio
import contextlib
import json
import logging
from typing import Dict, Set

from redis.asyncio import Redis
from redis.exceptions import RedisError


logger = logging.getLogger(__name__)


class SessionFeed:
    """
    Fan-out of session write notifications.

    The API publishes one message per successful write to a Redis channel;
    every API process subscribes to the same channel and forwards messages
    to local listeners registered for that session id.
    """

    def __init__(self, url: str, channel: str, publish_timeout: float = 1.0):
        self._url = url
        self._channel = channel
        self._publish_timeout = publish_timeout

        self._pub: Redis | None = None
        self._sub: Redis | None = None
        self._task: asyncio.Task | None = None

        # session_id -> listener queues
        self._listeners: Dict[str, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        if self._task:
            return
        self._pub = Redis.from_url(
            self._url, encoding="utf-8", decode_responses=True,
            socket_connect_timeout=self._publish_timeout, socket_timeout=self._publish_timeout,
        )
        self._sub = Redis.from_url(
            self._url, encoding="utf-8", decode_responses=True,
            socket_connect_timeout=self._publish_timeout,
        )

        async def _runner():
            pubsub = self._sub.pubsub()
            await pubsub.subscribe(self._channel)
            try:
                while True:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except RedisError as e:
                        logger.warning("feed subscription error: %s", e)
                        await asyncio.sleep(1.0)
                        continue
                    if not msg or msg.get("type") != "message":
                        continue
                    try:
                        data = json.loads(msg["data"])
                    except json.JSONDecodeError:
                        continue
                    sid = data.get("session_id")
                    if not isinstance(sid, str):
                        continue
                    await self._dispatch(sid, data)
            finally:
                with contextlib.suppress(Exception):
                    await pubsub.unsubscribe(self._channel)
                with contextlib.suppress(Exception):
                    await pubsub.close()

        self._task = asyncio.create_task(_runner())
        logger.info("session feed started on %s", self._channel)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(Exception, asyncio.CancelledError):
                await self._task
            self._task = None
        if self._pub:
            with contextlib.suppress(Exception):
                await self._pub.aclose()
            self._pub = None
        if self._sub:
            with contextlib.suppress(Exception):
                await self._sub.aclose()
            self._sub = None

    async def publish(self, payload: dict) -> bool:
        """
        Best effort and bounded by publish_timeout: a slow or dead Redis
        never fails or holds back the write that triggered it.
        """
        if self._pub is None:
            return False
        try:
            await asyncio.wait_for(
                self._pub.publish(self._channel, json.dumps(payload, default=str)),
                timeout=self._publish_timeout,
            )
        except (RedisError, asyncio.TimeoutError) as e:
            logger.warning("feed publish failed for %s: %s", payload.get("session_id"), e)
            return False
        return True

    async def register(self, session_id: str, max_queue: int = 100) -> asyncio.Queue:
        """Registers a listener and returns its message queue."""
        q: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        async with self._lock:
            self._listeners.setdefault(session_id, set()).add(q)
        return q

    async def unregister(self, session_id: str, q: asyncio.Queue) -> None:
        async with self._lock:
            s = self._listeners.get(session_id)
            if not s:
                return
            s.discard(q)
            if not s:
                self._listeners.pop(session_id, None)

    async def _dispatch(self, session_id: str, data: dict) -> None:
        async with self._lock:
            queues = list(self._listeners.get(session_id, ()))
        for q in queues:
            try:
                q.put_nowait(data)
            except asyncio.QueueFull:
                # slow listener, drop it
                await self.unregister(session_id, q)
