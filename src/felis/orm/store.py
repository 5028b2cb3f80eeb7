"""
Session store: the durable system of record for experiment sessions.

A session is one ``experiment_session`` row plus its ``session_event`` rows.
Appends lock the session row for the duration of one transaction, so a batch
is written contiguously and concurrent batches for the same session never
interleave. There is no lock shared between sessions.

The store never retries. Connection and driver errors, as well as operations
that exceed ``op_timeout``, surface as :class:`StorageUnavailable`; the caller
decides whether to retry.
"""
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from tortoise import connections
from tortoise.exceptions import ConfigurationError, DBConnectionError, IntegrityError, OperationalError
from tortoise.transactions import in_transaction

from felis.orm.models import ExperimentSession, SessionEvent
from felis.utils.enums import AppendStatus, HealthStatus, SessionOrigin, SessionState
from felis.utils.errors import InternalError, InvalidPayload, StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventRecord:
    timestamp: int
    event_type: str
    data: Any = None


@dataclass(frozen=True)
class SessionDraft:
    """
    Everything needed to open a session. Built through one of two constructors:

    * :meth:`incremental` - the create-then-append flow, no events yet;
    * :meth:`one_shot` - a whole session document with its events inlined.

    Both are written by :meth:`SessionStore.open_session`.
    """
    origin: SessionOrigin
    client_start_time: datetime
    setup_info: str = ""
    user_agent: str = ""
    device: Optional[dict] = None
    location: Optional[dict] = None
    label: Optional[str] = None
    machine_name: Optional[str] = None
    client_end_time: Optional[datetime] = None
    events: tuple = ()
    received_at: Optional[datetime] = None
    ip_address: Optional[str] = None

    @classmethod
    def incremental(
        cls, *,
        setup_info: str,
        device: dict,
        user_agent: str,
        client_start_time: datetime,
        location: Optional[dict] = None,
        received_at: Optional[datetime] = None,
        ip_address: Optional[str] = None,
    ) -> "SessionDraft":
        required = {
            "setup_info": setup_info,
            "device": device,
            "user_agent": user_agent,
            "client_start_time": client_start_time,
        }
        missing = [k for k, v in required.items() if v is None]
        if missing:
            raise InvalidPayload(f"missing required fields: {', '.join(missing)}")
        if not setup_info.strip():
            raise InvalidPayload("setup_info must not be blank")
        return cls(
            origin=SessionOrigin.INCREMENTAL,
            client_start_time=client_start_time,
            setup_info=setup_info,
            user_agent=user_agent,
            device=device,
            location=location,
            received_at=received_at,
            ip_address=ip_address,
        )

    @classmethod
    def one_shot(
        cls, *,
        client_start_time: datetime,
        events: Sequence[EventRecord] = (),
        client_end_time: Optional[datetime] = None,
        label: Optional[str] = None,
        machine_name: Optional[str] = None,
        user_agent: str = "",
        setup_info: str = "",
        device: Optional[dict] = None,
        location: Optional[dict] = None,
        received_at: Optional[datetime] = None,
        ip_address: Optional[str] = None,
    ) -> "SessionDraft":
        if client_start_time is None:
            raise InvalidPayload("missing required fields: client_start_time")
        return cls(
            origin=SessionOrigin.ONE_SHOT,
            client_start_time=client_start_time,
            client_end_time=client_end_time,
            events=tuple(events),
            label=label,
            machine_name=machine_name,
            user_agent=user_agent or "",
            setup_info=setup_info or "",
            device=device,
            location=location,
            received_at=received_at,
            ip_address=ip_address,
        )


@dataclass(frozen=True)
class AppendReceipt:
    status: AppendStatus
    appended: int = 0
    # end time was already recorded before this call
    was_closed: bool = False
    closed: bool = False


@dataclass(frozen=True)
class PingResult:
    status: HealthStatus
    message: str

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.OK


@dataclass
class SessionRecord:
    id: str
    origin: SessionOrigin
    setup_info: str
    user_agent: str
    device: Optional[dict]
    location: Optional[dict]
    label: Optional[str]
    machine_name: Optional[str]
    client_start_time: datetime
    client_end_time: Optional[datetime]
    received_at: datetime
    ip_address: Optional[str]
    events: List[EventRecord] = field(default_factory=list)

    @property
    def state(self) -> SessionState:
        return SessionState.CLOSED if self.client_end_time else SessionState.OPEN


def _encode(data: Any) -> str:
    # payload is opaque: keep the exact JSON value, scalars included
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def _parse_id(session_id) -> Optional[uuid.UUID]:
    try:
        return session_id if isinstance(session_id, uuid.UUID) else uuid.UUID(str(session_id))
    except ValueError:
        return None


class SessionStore:
    def __init__(self, op_timeout: float = 10.0, ping_timeout: float = 2.0, connection: str = "default"):
        self._op_timeout = op_timeout
        self._ping_timeout = ping_timeout
        self._connection = connection

    async def _guard(self, op: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self._op_timeout)
        except IntegrityError as e:
            logger.error("%s: integrity violation: %s", op, e)
            raise InternalError(f"{op} failed") from e
        except (OperationalError, DBConnectionError, ConfigurationError, OSError, asyncio.TimeoutError) as e:
            logger.error("%s: storage unavailable: %r", op, e)
            raise StorageUnavailable(f"{op}: storage unavailable") from e
        except Exception as e:
            logger.exception("%s: unexpected failure", op)
            raise InternalError(f"{op} failed") from e

    # ---------- create ----------

    async def create_session(
        self,
        setup_info: str,
        device: dict,
        user_agent: str,
        location: Optional[dict],
        client_start_time: datetime,
        *,
        received_at: Optional[datetime] = None,
        ip_address: Optional[str] = None,
    ) -> str:
        draft = SessionDraft.incremental(
            setup_info=setup_info,
            device=device,
            user_agent=user_agent,
            location=location,
            client_start_time=client_start_time,
            received_at=received_at,
            ip_address=ip_address,
        )
        return await self.open_session(draft)

    async def open_session(self, draft: SessionDraft) -> str:
        return await self._guard("open_session", self._open(draft))

    async def _open(self, draft: SessionDraft) -> str:
        sid = uuid.uuid4()
        async with in_transaction(self._connection) as conn:
            await ExperimentSession.create(
                id=sid,
                origin=draft.origin,
                setup_info=draft.setup_info,
                user_agent=draft.user_agent,
                device=draft.device,
                location=draft.location,
                label=draft.label,
                machine_name=draft.machine_name,
                client_start_time=draft.client_start_time,
                client_end_time=draft.client_end_time,
                received_at=draft.received_at or datetime.now(timezone.utc),
                ip_address=draft.ip_address,
                event_count=len(draft.events),
                using_db=conn,
            )
            if draft.events:
                await SessionEvent.bulk_create(self._rows(sid, 0, draft.events), using_db=conn)
        logger.info("opened %s session %s with %d events", draft.origin, sid, len(draft.events))
        return str(sid)

    # ---------- append ----------

    async def append_events(
        self,
        session_id: str,
        events: Sequence[EventRecord],
        client_end_time: Optional[datetime] = None,
    ) -> AppendReceipt:
        sid = _parse_id(session_id)
        if sid is None:
            return AppendReceipt(AppendStatus.NOT_FOUND)
        return await self._guard("append_events", self._append(sid, list(events), client_end_time))

    async def _append(
        self, sid: uuid.UUID, events: List[EventRecord], client_end_time: Optional[datetime]
    ) -> AppendReceipt:
        async with in_transaction(self._connection) as conn:
            session = await (
                ExperimentSession.filter(id=sid).using_db(conn).select_for_update().first()
            )
            if session is None:
                return AppendReceipt(AppendStatus.NOT_FOUND)

            was_closed = session.client_end_time is not None
            base = session.event_count
            patch = {}
            if events:
                await SessionEvent.bulk_create(self._rows(sid, base, events), using_db=conn)
                patch["event_count"] = base + len(events)
            if client_end_time is not None and not was_closed:
                patch["client_end_time"] = client_end_time
            if patch:
                await ExperimentSession.filter(id=sid).using_db(conn).update(**patch)

        return AppendReceipt(
            AppendStatus.ACKNOWLEDGED,
            appended=len(events),
            was_closed=was_closed,
            closed=was_closed or client_end_time is not None,
        )

    @staticmethod
    def _rows(sid: uuid.UUID, base: int, events: Sequence[EventRecord]) -> List[SessionEvent]:
        return [
            SessionEvent(
                session_id=sid,
                seq=base + i,
                timestamp=ev.timestamp,
                event_type=ev.event_type,
                data=_encode(ev.data),
            )
            for i, ev in enumerate(events)
        ]

    # ---------- read ----------

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        sid = _parse_id(session_id)
        if sid is None:
            return None
        return await self._guard("get_session", self._get(sid))

    async def _get(self, sid: uuid.UUID) -> Optional[SessionRecord]:
        session = await ExperimentSession.get_or_none(id=sid)
        if session is None:
            return None
        rows = await SessionEvent.filter(session_id=sid).order_by("seq")
        return SessionRecord(
            id=str(session.id),
            origin=session.origin,
            setup_info=session.setup_info,
            user_agent=session.user_agent,
            device=session.device,
            location=session.location,
            label=session.label,
            machine_name=session.machine_name,
            client_start_time=session.client_start_time,
            client_end_time=session.client_end_time,
            received_at=session.received_at,
            ip_address=session.ip_address,
            events=[
                EventRecord(timestamp=r.timestamp, event_type=r.event_type, data=json.loads(r.data))
                for r in rows
            ],
        )

    # ---------- health ----------

    async def ping(self) -> PingResult:
        """Never raises: every failure becomes an ``Error`` result."""
        try:
            conn = connections.get(self._connection)
            await asyncio.wait_for(conn.execute_query("SELECT 1"), timeout=self._ping_timeout)
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.warning("database ping failed: %s", reason)
            return PingResult(HealthStatus.ERROR, f"Unreachable: {reason}")
        return PingResult(HealthStatus.OK, "Connected")
