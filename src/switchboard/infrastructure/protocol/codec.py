"""JSON-lines framing for protocol envelopes.

One envelope per line, UTF-8, terminated by a single ``\\n``. JSON string
escaping guarantees that no payload can embed a raw line break.
"""

from __future__ import annotations

import json
from typing import Any, TypeVar

from pydantic import BaseModel

from switchboard.core.domain.envelope import Envelope
from switchboard.core.domain.errors import MalformedEnvelope

ENC = "utf-8"
DELIM = b"\n"

ModelT = TypeVar("ModelT", bound=BaseModel)


def decode(line: bytes | str) -> Envelope:
    """Parse one line into an ``Envelope``.

    Raises:
        MalformedEnvelope: If the line is not a JSON object with a string
            ``type`` (and, when present, a string ``id``).
    """
    if isinstance(line, bytes):
        try:
            line = line.decode(ENC)
        except UnicodeDecodeError as exc:
            raise MalformedEnvelope(f"invalid utf-8: {exc}") from exc

    try:
        obj = json.loads(line)
    except json.JSONDecodeError as exc:
        raise MalformedEnvelope(f"invalid json: {exc.msg}", details={"pos": exc.pos}) from exc

    if not isinstance(obj, dict):
        raise MalformedEnvelope("envelope must be a JSON object")
    msg_type = obj.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise MalformedEnvelope("envelope 'type' must be a non-empty string")
    msg_id = obj.get("id")
    if msg_id is not None and not isinstance(msg_id, str):
        raise MalformedEnvelope("envelope 'id' must be a string")

    return Envelope.from_dict(obj)


def encode(envelope: Envelope) -> bytes:
    """Serialize an envelope to exactly one newline-terminated line."""
    text = json.dumps(envelope.to_dict(), ensure_ascii=False, separators=(",", ":"))
    return text.encode(ENC) + DELIM


def to_wire_data(data: Any) -> Any:
    """Convert a payload model (or list of models) into a JSON value."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(data, (list, tuple)):
        return [to_wire_data(item) for item in data]
    return data


def parse_data(envelope: Envelope, model: type[ModelT]) -> ModelT:
    """Validate an envelope's payload against a request model.

    A ``null`` payload is treated as an empty object so that models with
    all-optional fields accept it.
    """
    return model.model_validate(envelope.data if envelope.data is not None else {})
