"""
Realtime Events — the wire format of the consultation websocket.

Every frame in either direction is a JSON object ``{"type": ..., "payload":
{...}}``.  Inbound frames are parsed into an InboundEvent and their payload
is validated against the model for that type before anything reaches the
orchestrator.  Outbound frames are built through the OutboundEvent
factories so every event carries a timestamp.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator


class InboundType(str, Enum):
    START = "start"
    MESSAGE = "message"
    LOCATION = "location"
    END = "end"
    HISTORY = "history"
    PING = "ping"


class OutboundType(str, Enum):
    CONNECTED = "connected"
    SESSION_STARTED = "session_started"
    MESSAGE = "message"
    DIAGNOSIS = "diagnosis"
    APPOINTMENT = "appointment"
    HISTORY = "history"
    ERROR = "error"
    PONG = "pong"


class InvalidEventError(ValueError):
    """An inbound frame could not be parsed or validated."""


def _new_uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Inbound payloads
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class StartPayload(BaseModel):
    patient_id: str = Field(min_length=1)
    patient_name: Optional[str] = None


class MessagePayload(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message text must not be empty")
        return value


class LocationPayload(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class HistoryPayload(BaseModel):
    # Defaults to the patient of the connection's current session
    patient_id: Optional[str] = None


class EmptyPayload(BaseModel):
    pass


PAYLOAD_MODELS: dict[InboundType, type[BaseModel]] = {
    InboundType.START: StartPayload,
    InboundType.MESSAGE: MessagePayload,
    InboundType.LOCATION: LocationPayload,
    InboundType.END: EmptyPayload,
    InboundType.HISTORY: HistoryPayload,
    InboundType.PING: EmptyPayload,
}


class InboundEvent(BaseModel):
    event_id: str = Field(default_factory=_new_uuid)
    type: InboundType
    payload: Any
    received_at: datetime = Field(default_factory=_now)

    @classmethod
    def parse(cls, raw: str | bytes) -> InboundEvent:
        """Decode and validate one frame.  Raises InvalidEventError."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidEventError("Invalid JSON") from exc
        if not isinstance(data, dict):
            raise InvalidEventError("Event must be a JSON object")

        try:
            event_type = InboundType(data.get("type"))
        except ValueError as exc:
            raise InvalidEventError(f"Unknown event type: {data.get('type')!r}") from exc

        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise InvalidEventError("Event payload must be a JSON object")
        try:
            model = PAYLOAD_MODELS[event_type].model_validate(payload)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or "payload"
            raise InvalidEventError(
                f"Invalid {event_type.value} payload: {field}: {first.get('msg')}"
            ) from exc
        return cls(type=event_type, payload=model)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Outbound events
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class OutboundEvent(BaseModel):
    type: OutboundType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    # ── Convenience factories ──

    @classmethod
    def connected(cls, connection_id: str) -> OutboundEvent:
        return cls(
            type=OutboundType.CONNECTED,
            payload={"connection_id": connection_id, "message": "Connected to AI doctor"},
        )

    @classmethod
    def session_started(cls, session_id: str, greeting: str) -> OutboundEvent:
        return cls(
            type=OutboundType.SESSION_STARTED,
            payload={"session_id": session_id, "message": greeting},
        )

    @classmethod
    def message(cls, session_id: str, text: str, state: str) -> OutboundEvent:
        return cls(
            type=OutboundType.MESSAGE,
            payload={"session_id": session_id, "message": text, "state": state},
        )

    @classmethod
    def diagnosis(cls, session_id: str, outcome: dict[str, Any]) -> OutboundEvent:
        return cls(
            type=OutboundType.DIAGNOSIS,
            payload={"session_id": session_id, "diagnosis": outcome},
        )

    @classmethod
    def appointment(
        cls,
        session_id: str,
        appointment: dict[str, Any],
        doctor: dict[str, Any] | None = None,
        location: dict[str, Any] | None = None,
    ) -> OutboundEvent:
        return cls(
            type=OutboundType.APPOINTMENT,
            payload={
                "session_id": session_id,
                "appointment": appointment,
                "doctor": doctor,
                "location": location,
            },
        )

    @classmethod
    def history(cls, patient_id: str, consultations: list[dict[str, Any]]) -> OutboundEvent:
        return cls(
            type=OutboundType.HISTORY,
            payload={"patient_id": patient_id, "consultations": consultations},
        )

    @classmethod
    def error(cls, message: str) -> OutboundEvent:
        return cls(type=OutboundType.ERROR, payload={"message": message})

    @classmethod
    def pong(cls) -> OutboundEvent:
        return cls(type=OutboundType.PONG)
