"""
HTTP client for the ingestion API with an at-least-once flush policy.

    async with IngestClient("https://felis.example") as client:
        buffer = EventBuffer()
        await client.create_session(buffer, setup_info="pilot", user_agent=ua, device=device)
        buffer.log("TargetSpawned", {"x": 400, "y": 300})
        await client.flush(buffer)
        await client.close_session(buffer)

A batch is evicted from the buffer only on a 2xx answer. Timeouts, transport
errors and 5xx answers keep it buffered for the next flush, so a batch may be
stored twice but is never lost.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from felis.client.buffer import EventBuffer
from felis.utils.enums import FlushOutcome, HealthStatus

logger = logging.getLogger(__name__)


class IngestClient:
    def __init__(
        self,
        base_url: str = "",
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._http = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_http = client is None
        self._flushing = False
        self.session_id: Optional[str] = None

    async def __aenter__(self) -> "IngestClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def create_session(
        self,
        buffer: EventBuffer,
        *,
        setup_info: str,
        user_agent: str,
        device: Dict[str, Any],
        location: Optional[Dict[str, Any]] = None,
    ) -> str:
        started = buffer.start()
        resp = await self._http.post("/api/sessions", json={
            "setupInfo": setup_info,
            "locationInfo": location,
            "userAgent": user_agent,
            "device": device,
            "clientStartTime": started.isoformat(),
        })
        resp.raise_for_status()
        self.session_id = resp.json()["id"]
        logger.info("session %s created", self.session_id)
        return self.session_id

    async def flush(self, buffer: EventBuffer, *, client_end_time: Optional[datetime] = None) -> FlushOutcome:
        if self.session_id is None or self._flushing:
            return FlushOutcome.SKIPPED
        batch = buffer.snapshot()
        if not batch and client_end_time is None:
            return FlushOutcome.SKIPPED

        if client_end_time is None:
            body: Any = batch
        else:
            body = {"events": batch, "clientEndTime": client_end_time.isoformat()}

        self._flushing = True
        try:
            resp = await self._http.put(f"/api/sessions/{self.session_id}", json=body)
        except httpx.HTTPError as e:
            # unknown outcome, keep the batch
            logger.warning("flush of %d events failed: %r", len(batch), e)
            return FlushOutcome.RETRY
        finally:
            self._flushing = False

        if resp.is_success:
            buffer.evict(len(batch))
            return FlushOutcome.ACKNOWLEDGED
        if resp.status_code == 404:
            logger.error("session %s is unknown to the server", self.session_id)
            return FlushOutcome.NOT_FOUND
        if resp.status_code >= 500:
            logger.warning("flush of %d events got %s, will retry", len(batch), resp.status_code)
            return FlushOutcome.RETRY
        logger.error("flush of %d events rejected: %s %s", len(batch), resp.status_code, resp.text)
        return FlushOutcome.REJECTED

    async def run_periodic(self, buffer: EventBuffer, interval: float, stop: asyncio.Event) -> None:
        """Flushes every ``interval`` seconds until ``stop`` is set."""
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self.flush(buffer)

    async def close_session(self, buffer: EventBuffer) -> FlushOutcome:
        """Final flush carrying the end time. The session is forgotten only once acknowledged."""
        outcome = await self.flush(buffer, client_end_time=datetime.now(timezone.utc))
        # events logged while the final flush was in flight are still unsent
        while outcome == FlushOutcome.ACKNOWLEDGED and len(buffer):
            outcome = await self.flush(buffer)
        if outcome == FlushOutcome.ACKNOWLEDGED:
            self.session_id = None
            buffer.reset()
        return outcome

    async def health(self) -> Dict[str, str]:
        try:
            resp = await self._http.get("/api/healthcheck")
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            return {"status": HealthStatus.ERROR.value, "message": f"Connection Error - {e}"}
