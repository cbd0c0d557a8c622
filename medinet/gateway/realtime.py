"""
Realtime Gateway — the consultation websocket.

One connection carries at most one consultation session at a time.  The
read loop answers ``ping`` itself and hands every other event to the
connection's FIFO queue, so a long diagnosis never stalls the socket and
a connection's events are still handled strictly in order.

Errors never end the loop: malformed frames, unknown types, validation
failures and handler exceptions all become an ``error`` event.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

from medinet import settings
from medinet.gateway.events import (
    InboundEvent,
    InboundType,
    InvalidEventError,
    OutboundEvent,
)
from medinet.gateway.orchestrator import ProcessResult, SessionOrchestrator
from medinet.gateway.queue import ConnectionQueueManager
from medinet.gateway.session import (
    SessionClosedError,
    SessionCreationError,
    SessionNotFoundError,
)

logger = logging.getLogger("gateway.realtime")

NO_SESSION_MESSAGE = "No active session. Please start a session first."
SESSION_GONE_MESSAGE = "Session not found or already closed. Please start a new session."
SESSION_CLOSED_MESSAGE = "This consultation has finished. Please start a new session."
LOCATION_RECEIVED_MESSAGE = "Location received successfully"


@dataclass
class Connection:
    connection_id: str
    websocket: Any
    session_id: Optional[str] = None
    patient_id: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class RealtimeGateway:

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        cleanup_interval_seconds: int | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._cleanup_interval = (
            cleanup_interval_seconds
            if cleanup_interval_seconds is not None
            else settings.SESSION_CLEANUP_INTERVAL_SECONDS
        )
        self._connections: dict[str, Connection] = {}
        self._queue = ConnectionQueueManager(processor=self.handle_event)
        self._cleanup_task: asyncio.Task | None = None

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get_connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Background cleanup
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def start(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info(
                "Session cleanup loop started (every %ds)", self._cleanup_interval
            )

    async def stop(self) -> None:
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None
        await self._queue.stop()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                await self._orchestrator.cleanup_inactive_sessions()
            except Exception as exc:
                logger.error("Session cleanup error: %s", exc, exc_info=True)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Connection lifecycle
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def serve(self, websocket: WebSocket) -> None:
        """Run one websocket connection until the client goes away."""
        await websocket.accept()
        conn = Connection(connection_id=str(uuid.uuid4()), websocket=websocket)
        self._connections[conn.connection_id] = conn
        logger.info("Connection %s opened", conn.connection_id)

        try:
            await self._send(conn, OutboundEvent.connected(conn.connection_id))
            while True:
                raw = await websocket.receive_text()
                await self._on_frame(conn, raw)
        except WebSocketDisconnect:
            logger.info("Connection %s closed by client", conn.connection_id)
        except Exception as exc:
            logger.error("Connection %s failed: %s", conn.connection_id, exc)
        finally:
            await self.disconnect(conn.connection_id)

    async def _on_frame(self, conn: Connection, raw: str) -> None:
        try:
            event = InboundEvent.parse(raw)
        except InvalidEventError as exc:
            await self._send(conn, OutboundEvent.error(str(exc)))
            return

        if event.type == InboundType.PING:
            await self._send(conn, OutboundEvent.pong())
            return
        await self._queue.enqueue(conn.connection_id, event)

    async def disconnect(self, connection_id: str) -> None:
        """Drain queued work, then end the connection's session (best effort)."""
        await self._queue.release(connection_id)
        conn = self._connections.pop(connection_id, None)
        if conn is None or conn.session_id is None:
            return
        try:
            await self._orchestrator.end_session(conn.session_id)
        except Exception as exc:
            logger.warning(
                "Could not end session %s on disconnect: %s", conn.session_id, exc
            )

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    #  Event handling (runs on the connection's queue worker)
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def handle_event(self, connection_id: str, event: InboundEvent) -> None:
        conn = self._connections.get(connection_id)
        if conn is None:
            return
        handlers = {
            InboundType.START: self._handle_start,
            InboundType.MESSAGE: self._handle_message,
            InboundType.LOCATION: self._handle_location,
            InboundType.END: self._handle_end,
            InboundType.HISTORY: self._handle_history,
            InboundType.PING: self._handle_ping,
        }
        try:
            await handlers[event.type](conn, event.payload)
        except SessionClosedError:
            conn.session_id = None
            await self._send(conn, OutboundEvent.error(SESSION_CLOSED_MESSAGE))
        except SessionNotFoundError:
            conn.session_id = None
            await self._send(conn, OutboundEvent.error(SESSION_GONE_MESSAGE))
        except SessionCreationError as exc:
            await self._send(conn, OutboundEvent.error(str(exc)))
        except Exception as exc:
            logger.error(
                "Handler for %s failed on %s: %s",
                event.type.value, connection_id, exc, exc_info=True,
            )
            await self._send(conn, OutboundEvent.error(str(exc) or type(exc).__name__))

    async def _handle_start(self, conn: Connection, payload) -> None:
        if conn.session_id is not None:
            previous = conn.session_id
            conn.session_id = None
            await self._orchestrator.end_session(previous)

        session_id, greeting = await self._orchestrator.start_session(
            payload.patient_id, payload.patient_name
        )
        conn.session_id = session_id
        conn.patient_id = payload.patient_id
        await self._send(conn, OutboundEvent.session_started(session_id, greeting))

    async def _handle_message(self, conn: Connection, payload) -> None:
        if conn.session_id is None:
            await self._send(conn, OutboundEvent.error(NO_SESSION_MESSAGE))
            return
        result = await self._orchestrator.process_message(conn.session_id, payload.text)
        await self._send_result(conn, result)

    async def _send_result(self, conn: Connection, result: ProcessResult) -> None:
        await self._send(
            conn,
            OutboundEvent.message(result.session_id, result.response_text, result.state.value),
        )
        if result.diagnosis is not None:
            await self._send(
                conn,
                OutboundEvent.diagnosis(
                    result.session_id, result.diagnosis.model_dump(mode="json")
                ),
            )
        if result.appointment is not None:
            await self._send(
                conn,
                OutboundEvent.appointment(
                    result.session_id,
                    result.appointment.model_dump(mode="json"),
                    doctor=result.doctor.model_dump(mode="json") if result.doctor else None,
                    location=result.location.model_dump(mode="json") if result.location else None,
                ),
            )

    async def _handle_location(self, conn: Connection, payload) -> None:
        if conn.session_id is None:
            await self._send(conn, OutboundEvent.error(NO_SESSION_MESSAGE))
            return
        await self._orchestrator.update_patient_location(
            conn.session_id, payload.latitude, payload.longitude
        )
        session = self._orchestrator.get_session(conn.session_id)
        state = session.stage.value if session is not None else "completed"
        await self._send(
            conn, OutboundEvent.message(conn.session_id, LOCATION_RECEIVED_MESSAGE, state)
        )

    async def _handle_end(self, conn: Connection, payload) -> None:
        if conn.session_id is None:
            await self._send(conn, OutboundEvent.error(NO_SESSION_MESSAGE))
            return
        session_id = conn.session_id
        conn.session_id = None
        await self._orchestrator.end_session(session_id)
        await self._send(
            conn, OutboundEvent.message(session_id, "Consultation ended.", "completed")
        )

    async def _handle_history(self, conn: Connection, payload) -> None:
        patient_id = payload.patient_id or conn.patient_id
        if not patient_id:
            await self._send(conn, OutboundEvent.error(NO_SESSION_MESSAGE))
            return
        summaries = await self._orchestrator.get_patient_history(patient_id)
        await self._send(
            conn,
            OutboundEvent.history(patient_id, [s.model_dump(mode="json") for s in summaries]),
        )

    async def _handle_ping(self, conn: Connection, payload) -> None:
        await self._send(conn, OutboundEvent.pong())

    async def _send(self, conn: Connection, event: OutboundEvent) -> None:
        async with conn.send_lock:
            try:
                await conn.websocket.send_json(event.to_wire())
            except Exception as exc:
                # The peer may already be gone; the read loop handles teardown
                logger.debug(
                    "Send of %s to %s failed: %s",
                    event.type.value, conn.connection_id, exc,
                )
