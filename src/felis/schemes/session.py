from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field, field_validator

from felis.orm.store import EventRecord, SessionRecord
from felis.schemes.base import CamelModel
from felis.utils.enums import HealthStatus, SessionOrigin, SessionState


class Viewport(CamelModel):
    width: int
    height: int


class Screen(CamelModel):
    width: int
    height: int
    pixel_ratio: float


class Device(CamelModel):
    viewport: Viewport
    screen: Screen


class LocationInfo(CamelModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    error: Optional[str] = None


class EventIn(CamelModel):
    timestamp: int
    event_type: str = Field(..., min_length=1)
    data: Any = Field(default_factory=dict)

    def to_record(self) -> EventRecord:
        return EventRecord(timestamp=self.timestamp, event_type=self.event_type, data=self.data)


class EventBatch(CamelModel):
    events: List[EventIn] = Field(default_factory=list)
    client_end_time: Optional[datetime] = None


class SessionCreate(CamelModel):
    setup_info: str
    location_info: Optional[LocationInfo] = None
    user_agent: str
    device: Device
    client_start_time: datetime

    @field_validator("setup_info")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("setupInfo must not be blank")
        return v


class SessionCreated(CamelModel):
    id: str


class SessionLogIn(CamelModel):
    """Whole session document, written in one call."""
    session_id: str = ""
    machine_name: str = ""
    user_agent: str = ""
    client_start_time: datetime
    client_end_time: Optional[datetime] = None
    events: List[EventIn] = Field(default_factory=list)
    setup_info: Optional[str] = None
    device: Optional[Device] = None
    location_info: Optional[LocationInfo] = None


class SessionLogged(CamelModel):
    id: str
    message: str


class EventOut(CamelModel):
    timestamp: int
    event_type: str
    data: Any = None


class SessionOut(CamelModel):
    id: str
    origin: SessionOrigin
    state: SessionState
    setup_info: str
    user_agent: str
    device: Optional[dict] = None
    location_info: Optional[dict] = None
    label: Optional[str] = None
    machine_name: Optional[str] = None
    client_start_time: datetime
    client_end_time: Optional[datetime] = None
    received_at: datetime
    ip_address: Optional[str] = None
    events: List[EventOut] = []

    @classmethod
    def from_record(cls, rec: SessionRecord) -> "SessionOut":
        return cls(
            id=rec.id,
            origin=rec.origin,
            state=rec.state,
            setup_info=rec.setup_info,
            user_agent=rec.user_agent,
            device=rec.device,
            location_info=rec.location,
            label=rec.label,
            machine_name=rec.machine_name,
            client_start_time=rec.client_start_time,
            client_end_time=rec.client_end_time,
            received_at=rec.received_at,
            ip_address=rec.ip_address,
            events=[EventOut(timestamp=e.timestamp, event_type=e.event_type, data=e.data) for e in rec.events],
        )


class HealthOut(CamelModel):
    status: HealthStatus
    message: str
