import asyncio
import contextlib
import logging

from fastapi.websockets import WebSocket, WebSocketDisconnect

from felis.routes.session import get_feed, get_store
from felis.utils.errors import StorageUnavailable

logger = logging.getLogger(__name__)


async def session_ws(websocket: WebSocket):
    """Streams write notifications of one session to an observer."""
    await websocket.accept()
    session_id = websocket.path_params["session_id"]
    feed, store = get_feed(websocket), get_store(websocket)
    queue = None

    try:
        if feed is None:
            return await websocket.send_json({"type": "error", "error": "feed_disabled"})
        try:
            found = await store.get_session(session_id)
        except StorageUnavailable:
            return await websocket.send_json({"type": "error", "error": "storage_unavailable"})
        if found is None:
            return await websocket.send_json(
                {"type": "error", "error": "session_not_found", "session_id": session_id}
            )

        queue = await feed.register(session_id)
        await websocket.send_json({"type": "following", "session_id": session_id})

        async def reader():
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass

        async def sender():
            while True:
                data = await queue.get()
                await websocket.send_json(data)

        tasks = [asyncio.create_task(reader()), asyncio.create_task(sender())]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if task.exception() is not None:
                logger.warning("session %s follower stopped: %r", session_id, task.exception())

    finally:
        with contextlib.suppress(Exception):
            if queue is not None:
                await feed.unregister(session_id, queue)
        with contextlib.suppress(Exception):
            await websocket.close()
