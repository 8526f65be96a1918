"""
WebSocket event schemas.

Every frame is a JSON object whose ``type`` field selects the schema.
Client->server frames decode into ``InboundEvent``; server->client frames
into ``OutboundEvent``.
"""
from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore")

    def to_json(self) -> str:
        return self.model_dump_json()


# ===========================
# Client -> server
# ===========================

class InitiateCall(_Event):
    type: Literal["call:initiate"] = "call:initiate"
    callee_id: str = Field(..., min_length=1, max_length=255)
    context_ref: Optional[str] = Field(None, max_length=255)

    @field_validator("callee_id")
    @classmethod
    def strip_callee(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("callee_id cannot be blank")
        return v

    @field_validator("context_ref")
    @classmethod
    def blank_context_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class AcceptCall(_Event):
    type: Literal["call:accept"] = "call:accept"
    session_id: str = Field(..., min_length=1, max_length=255)


class RejectCall(_Event):
    type: Literal["call:reject"] = "call:reject"
    session_id: str = Field(..., min_length=1, max_length=255)


class EndCall(_Event):
    type: Literal["call:end"] = "call:end"
    session_id: str = Field(..., min_length=1, max_length=255)


class CancelCall(_Event):
    type: Literal["call:cancel"] = "call:cancel"
    session_id: str = Field(..., min_length=1, max_length=255)


class SendOffer(_Event):
    type: Literal["webrtc:offer"] = "webrtc:offer"
    session_id: str = Field(..., min_length=1, max_length=255)
    payload: Dict[str, Any]


class SendAnswer(_Event):
    type: Literal["webrtc:answer"] = "webrtc:answer"
    session_id: str = Field(..., min_length=1, max_length=255)
    payload: Dict[str, Any]


class SendCandidate(_Event):
    type: Literal["webrtc:ice-candidate"] = "webrtc:ice-candidate"
    session_id: str = Field(..., min_length=1, max_length=255)
    payload: Dict[str, Any]


class CheckOnline(_Event):
    type: Literal["user:check-online"] = "user:check-online"
    user_id: str = Field(..., min_length=1, max_length=255)


class ToggleAudio(_Event):
    type: Literal["call:toggle-audio"] = "call:toggle-audio"
    session_id: str = Field(..., min_length=1, max_length=255)
    enabled: bool


class ToggleVideo(_Event):
    type: Literal["call:toggle-video"] = "call:toggle-video"
    session_id: str = Field(..., min_length=1, max_length=255)
    enabled: bool


class Ping(_Event):
    type: Literal["ping"] = "ping"


InboundEvent = Annotated[
    Union[
        InitiateCall,
        AcceptCall,
        RejectCall,
        EndCall,
        CancelCall,
        SendOffer,
        SendAnswer,
        SendCandidate,
        CheckOnline,
        ToggleAudio,
        ToggleVideo,
        Ping,
    ],
    Field(discriminator="type")
]


# ===========================
# Server -> client
# ===========================

class Connected(_Event):
    type: Literal["connected"] = "connected"
    user_id: str
    handle: str


class IncomingCall(_Event):
    type: Literal["call:incoming"] = "call:incoming"
    session_id: str
    caller_id: str
    caller_name: Optional[str] = None
    caller_avatar: Optional[str] = None
    context_ref: Optional[str] = None


class CallInitiated(_Event):
    type: Literal["call:initiated"] = "call:initiated"
    session_id: str
    callee_id: str
    callee_online: bool = True


class CallAccepted(_Event):
    type: Literal["call:accepted"] = "call:accepted"
    session_id: str


class CallRejected(_Event):
    type: Literal["call:rejected"] = "call:rejected"
    session_id: str


class CallMissed(_Event):
    type: Literal["call:missed"] = "call:missed"
    session_id: str


class CallEnded(_Event):
    type: Literal["call:ended"] = "call:ended"
    session_id: str
    duration_seconds: int = 0


class CallErrorEvent(_Event):
    type: Literal["call:error"] = "call:error"
    message: str
    session_id: Optional[str] = None


class RelayedOffer(_Event):
    type: Literal["webrtc:offer"] = "webrtc:offer"
    session_id: str
    payload: Dict[str, Any]
    from_id: str


class RelayedAnswer(_Event):
    type: Literal["webrtc:answer"] = "webrtc:answer"
    session_id: str
    payload: Dict[str, Any]
    from_id: str


class RelayedCandidate(_Event):
    type: Literal["webrtc:ice-candidate"] = "webrtc:ice-candidate"
    session_id: str
    payload: Dict[str, Any]
    from_id: str


class OnlineStatus(_Event):
    type: Literal["user:online-status"] = "user:online-status"
    user_id: str
    is_online: bool


class PeerToggleAudio(_Event):
    type: Literal["call:peer-toggle-audio"] = "call:peer-toggle-audio"
    session_id: str
    user_id: str
    enabled: bool


class PeerToggleVideo(_Event):
    type: Literal["call:peer-toggle-video"] = "call:peer-toggle-video"
    session_id: str
    user_id: str
    enabled: bool


class Pong(_Event):
    type: Literal["pong"] = "pong"


OutboundEvent = Annotated[
    Union[
        Connected,
        IncomingCall,
        CallInitiated,
        CallAccepted,
        CallRejected,
        CallMissed,
        CallEnded,
        CallErrorEvent,
        RelayedOffer,
        RelayedAnswer,
        RelayedCandidate,
        OnlineStatus,
        PeerToggleAudio,
        PeerToggleVideo,
        Pong,
    ],
    Field(discriminator="type")
]


inbound_adapter = TypeAdapter(InboundEvent)
outbound_adapter = TypeAdapter(OutboundEvent)

# Signaling kind -> outbound schema
RELAYED_SIGNALS = {
    "webrtc:offer": RelayedOffer,
    "webrtc:answer": RelayedAnswer,
    "webrtc:ice-candidate": RelayedCandidate,
}


def parse_inbound(data: Union[str, bytes, Dict[str, Any]]):
    """
    Decode a client frame.

    Raises:
        pydantic.ValidationError: unknown type or malformed fields
    """
    if isinstance(data, dict):
        return inbound_adapter.validate_python(data)
    return inbound_adapter.validate_json(data)


def parse_outbound(data: Union[str, bytes, Dict[str, Any]]):
    """Decode a server frame (client side)."""
    if isinstance(data, dict):
        return outbound_adapter.validate_python(data)
    return outbound_adapter.validate_json(data)


__all__ = [
    'InitiateCall', 'AcceptCall', 'RejectCall', 'EndCall', 'CancelCall',
    'SendOffer', 'SendAnswer', 'SendCandidate', 'CheckOnline',
    'ToggleAudio', 'ToggleVideo', 'Ping', 'InboundEvent',
    'Connected', 'IncomingCall', 'CallInitiated', 'CallAccepted',
    'CallRejected', 'CallMissed', 'CallEnded', 'CallErrorEvent',
    'RelayedOffer', 'RelayedAnswer', 'RelayedCandidate', 'OnlineStatus',
    'PeerToggleAudio', 'PeerToggleVideo', 'Pong', 'OutboundEvent',
    'RELAYED_SIGNALS', 'parse_inbound', 'parse_outbound',
]
