import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from starlette.requests import HTTPConnection

from felis.orm.store import SessionStore
from felis.schemes.base import MessageOut
from felis.schemes.session import EventBatch, EventIn, SessionCreate, SessionCreated, SessionOut
from felis.utils.enums import AppendStatus
from felis.utils.redis import SessionFeed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def get_store(conn: HTTPConnection) -> SessionStore:
    return conn.app.state.store


def get_feed(conn: HTTPConnection) -> Optional[SessionFeed]:
    return getattr(conn.app.state, "feed", None)


def client_address(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def notify(feed: Optional[SessionFeed], kind: str, session_id: str, **extra) -> None:
    if feed is None:
        return
    await feed.publish({
        "type": kind,
        "session_id": session_id,
        "at": datetime.now(timezone.utc).isoformat(),
        **extra,
    })


@router.post("", response_model=SessionCreated)
async def create_session(
    payload: SessionCreate,
    request: Request,
    store: SessionStore = Depends(get_store),
    feed: Optional[SessionFeed] = Depends(get_feed),
):
    session_id = await store.create_session(
        setup_info=payload.setup_info,
        device=payload.device.model_dump(by_alias=True),
        user_agent=payload.user_agent,
        location=payload.location_info.model_dump(by_alias=True) if payload.location_info else None,
        client_start_time=payload.client_start_time,
        received_at=datetime.now(timezone.utc),
        ip_address=client_address(request),
    )
    await notify(feed, "created", session_id)
    return SessionCreated(id=session_id)


@router.put("/{session_id}", response_model=MessageOut)
async def append_events(
    session_id: str,
    payload: Union[List[EventIn], EventBatch] = Body(...),
    store: SessionStore = Depends(get_store),
    feed: Optional[SessionFeed] = Depends(get_feed),
):
    """
    Appends a batch. The body is either a bare list of events or
    ``{"events": [...], "clientEndTime": ...}`` which also closes the session.
    """
    if isinstance(payload, list):
        events, end_time = payload, None
    else:
        events, end_time = payload.events, payload.client_end_time

    receipt = await store.append_events(
        session_id, [e.to_record() for e in events], client_end_time=end_time
    )
    if receipt.status == AppendStatus.NOT_FOUND:
        raise HTTPException(404, f"Session '{session_id}' not found")

    if receipt.was_closed:
        logger.warning(
            "session %s already closed, appended %d more events", session_id, receipt.appended
        )
    await notify(feed, "appended", session_id, count=receipt.appended, closed=receipt.closed)
    return MessageOut(message=f"{receipt.appended} events appended to session '{session_id}'.")


@router.get("/{session_id}", response_model=SessionOut)
async def read_session(session_id: str, store: SessionStore = Depends(get_store)):
    if not (record := await store.get_session(session_id)):
        raise HTTPException(404, f"Session '{session_id}' not found")
    return SessionOut.from_record(record)
