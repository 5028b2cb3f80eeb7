import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional


class EventBuffer:
    """
    Client-side outbox of not yet acknowledged events.

    Events are stamped with the milliseconds elapsed since :meth:`start`,
    measured on a monotonic clock, so offsets never decrease within one buffer.
    Entries leave the buffer only through :meth:`evict`, which the flusher
    calls after the server acknowledged them.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._t0: Optional[float] = None
        self._events: List[Dict[str, Any]] = []
        self.start_time: Optional[datetime] = None

    def start(self) -> datetime:
        self._t0 = self._clock()
        self._events = []
        self.start_time = datetime.now(timezone.utc)
        return self.start_time

    @property
    def started(self) -> bool:
        return self._t0 is not None

    def log(self, event_type: str, data: Any = None) -> Optional[Dict[str, Any]]:
        if self._t0 is None:
            return None
        event = {
            "timestamp": int((self._clock() - self._t0) * 1000),
            "eventType": event_type,
            "data": data if data is not None else {},
        }
        self._events.append(event)
        return event

    def snapshot(self) -> List[Dict[str, Any]]:
        return list(self._events)

    def evict(self, count: int) -> None:
        # events logged while a flush was in flight sit after the snapshot
        del self._events[:count]

    def reset(self) -> None:
        self._t0 = None
        self._events = []
        self.start_time = None

    def __len__(self) -> int:
        return len(self._events)
