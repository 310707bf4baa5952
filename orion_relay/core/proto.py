from __future__ import annotations

import time
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProtocolError(ValueError):
    """Raised when an inbound frame cannot be decoded into a known message."""


class UnknownMessageType(ProtocolError):
    """Frame was well-formed JSON but carried an unrecognized ``type``."""

    def __init__(self, type_: Any) -> None:
        super().__init__(f"unknown message type: {type_!r}")
        self.type = type_


# ---------------------------------------------------------------------------
# Inbound messages (client -> server)
# ---------------------------------------------------------------------------

class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class Register(_Inbound):
    type: Literal["register"] = "register"
    peer_id: str = Field(alias="peerId", min_length=1)
    public_key: Any = Field(default=None, alias="publicKey")


class Relay(_Inbound):
    type: Literal["relay"] = "relay"
    to: str = Field(min_length=1)
    payload: Any = None


class Broadcast(_Inbound):
    type: Literal["broadcast"] = "broadcast"
    payload: Any = None


class SyncRequest(_Inbound):
    type: Literal["sync_request"] = "sync_request"
    last_sync: Any = Field(default=0, alias="lastSync")


class SyncResponse(_Inbound):
    type: Literal["sync_response"] = "sync_response"
    to: str = Field(min_length=1)
    messages: Any = None


class Ping(_Inbound):
    type: Literal["ping"] = "ping"


InboundMessage = Annotated[
    Union[Register, Relay, Broadcast, SyncRequest, SyncResponse, Ping],
    Field(discriminator="type"),
]

INBOUND_VARIANTS: Tuple[type, ...] = (Register, Relay, Broadcast, SyncRequest, SyncResponse, Ping)
INBOUND_TYPES = frozenset(cls.model_fields["type"].default for cls in INBOUND_VARIANTS)

_inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)


# ---------------------------------------------------------------------------
# Relay envelopes (server-internal, immutable)
# ---------------------------------------------------------------------------

EnvelopeKind = Literal["message", "broadcast", "sync_request", "sync_response", "peer_joined", "peer_left"]


class RelayEnvelope(BaseModel):
    """Typed, timestamped wrapper around a payload routed by the server.

    ``payload`` holds the kind-specific body: the opaque payload for
    ``message``/``broadcast``, ``lastSync`` for ``sync_request``, the
    ``messages`` list for ``sync_response`` and the public key for
    ``peer_joined``. For presence kinds ``from_`` carries the peer the
    announcement is about.
    """

    kind: EnvelopeKind
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    payload: Any = None
    created_at: int = Field(default_factory=lambda: now_ms())

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_frame(self) -> Dict[str, Any]:
        """Wire representation sent to the destination peer."""

        kind = self.kind
        if kind in ("message", "broadcast"):
            return {"type": kind, "from": self.from_, "payload": self.payload, "timestamp": self.created_at}
        if kind == "sync_request":
            return {"type": kind, "from": self.from_, "lastSync": self.payload}
        if kind == "sync_response":
            return {"type": kind, "from": self.from_, "messages": self.payload}
        if kind == "peer_joined":
            return {"type": kind, "peerId": self.from_, "publicKey": self.payload}
        return {"type": kind, "peerId": self.from_}


# ---------------------------------------------------------------------------
# Frame construction
# ---------------------------------------------------------------------------

def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def make_message(from_: Optional[str], to: str, payload: Any, *, ts: int | None = None) -> RelayEnvelope:
    return RelayEnvelope(kind="message", from_=from_, to=to, payload=payload, created_at=now_ms() if ts is None else ts)


def make_broadcast(from_: Optional[str], payload: Any, *, ts: int | None = None) -> RelayEnvelope:
    return RelayEnvelope(kind="broadcast", from_=from_, payload=payload, created_at=now_ms() if ts is None else ts)


def make_sync_request(from_: Optional[str], last_sync: Any) -> RelayEnvelope:
    return RelayEnvelope(kind="sync_request", from_=from_, payload=last_sync)


def make_sync_response(from_: Optional[str], to: str, messages: Any) -> RelayEnvelope:
    return RelayEnvelope(kind="sync_response", from_=from_, to=to, payload=messages)


def make_peer_joined(peer_id: str, public_key: Any) -> RelayEnvelope:
    return RelayEnvelope(kind="peer_joined", from_=peer_id, payload=public_key)


def make_peer_left(peer_id: str) -> RelayEnvelope:
    return RelayEnvelope(kind="peer_left", from_=peer_id)


def peers_frame(peers: list[Tuple[str, Any]]) -> Dict[str, Any]:
    return {"type": "peers", "peers": [{"peerId": pid, "publicKey": key} for pid, key in peers]}


def pong_frame() -> Dict[str, Any]:
    return {"type": "pong"}


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

def encode_frame(frame: Dict[str, Any]) -> str:
    return orjson.dumps(frame).decode("utf-8")


def decode_inbound(raw: Union[str, bytes]) -> Union[Register, Relay, Broadcast, SyncRequest, SyncResponse, Ping]:
    """Parse one inbound frame.

    Raises UnknownMessageType when the frame is a JSON object whose ``type`` is
    not one we handle, and ProtocolError for anything else that does not fit.
    """

    try:
        obj = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise ProtocolError(f"invalid_json: {e}") from e

    if not isinstance(obj, dict):
        raise ProtocolError("frame must be a JSON object")

    type_ = obj.get("type")
    if not isinstance(type_, str) or type_ not in INBOUND_TYPES:
        raise UnknownMessageType(type_)

    try:
        return _inbound_adapter.validate_python(obj)
    except ValidationError as e:
        raise ProtocolError(f"bad {type_} payload: {e.error_count()} error(s)") from e


def short_id(peer_id: Optional[str]) -> str:
    """Peer id trimmed for log lines."""

    if not peer_id:
        return "-"
    return peer_id[:8] + ("..." if len(peer_id) > 8 else "")


__all__ = [
    "ProtocolError",
    "UnknownMessageType",
    "Register",
    "Relay",
    "Broadcast",
    "SyncRequest",
    "SyncResponse",
    "Ping",
    "InboundMessage",
    "INBOUND_VARIANTS",
    "INBOUND_TYPES",
    "RelayEnvelope",
    "now_ms",
    "make_message",
    "make_broadcast",
    "make_sync_request",
    "make_sync_response",
    "make_peer_joined",
    "make_peer_left",
    "peers_frame",
    "pong_frame",
    "encode_frame",
    "decode_inbound",
    "short_id",
]
