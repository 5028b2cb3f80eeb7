from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request

from felis.orm.store import SessionDraft, SessionStore
from felis.routes.session import client_address, get_feed, get_store, notify
from felis.schemes.session import SessionLogIn, SessionLogged
from felis.utils.redis import SessionFeed

router = APIRouter(prefix="/api", tags=["legacy"])


@router.post("/log", response_model=SessionLogged)
async def log_session(
    payload: SessionLogIn,
    request: Request,
    store: SessionStore = Depends(get_store),
    feed: Optional[SessionFeed] = Depends(get_feed),
):
    """Records a whole session, events included, in one write."""
    draft = SessionDraft.one_shot(
        client_start_time=payload.client_start_time,
        client_end_time=payload.client_end_time,
        events=[e.to_record() for e in payload.events],
        label=payload.session_id or None,
        machine_name=payload.machine_name or None,
        user_agent=payload.user_agent,
        setup_info=payload.setup_info or "",
        device=payload.device.model_dump(by_alias=True) if payload.device else None,
        location=payload.location_info.model_dump(by_alias=True) if payload.location_info else None,
        received_at=datetime.now(timezone.utc),
        ip_address=client_address(request),
    )
    session_id = await store.open_session(draft)
    await notify(feed, "logged", session_id, count=len(payload.events))
    name = payload.session_id or session_id
    return SessionLogged(id=session_id, message=f"Session '{name}' was successfully recorded.")
