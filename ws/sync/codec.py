"""Wire format for SyncEnvelope.

Envelopes travel as plain JSON-safe dicts (the shape a watch/phone message dictionary expects)::

    {"schema_version": 1, "type": "session", "record": {...},
     "origin_timestamp": 1718000000.5, "origin_device_id": "3f2a..."}
"""

import json
import math
from ws.core.errors import EnvelopeError
from ws.core.records import SessionRecord, SettingsRecord, SyncEnvelope

WIRE_VERSION = 1

_TYPES = {
    "session": SessionRecord,
    "settings": SettingsRecord,
}


def encode_envelope(envelope: SyncEnvelope) -> dict:
    for type_name, record_cls in _TYPES.items():
        if isinstance(envelope.record, record_cls):
            break
    else:
        raise EnvelopeError(f"Cannot encode a record of type {type(envelope.record).__name__}")
    return {
        "schema_version": WIRE_VERSION,
        "type": type_name,
        "record": envelope.record.to_dict(),
        "origin_timestamp": float(envelope.origin_timestamp),
        "origin_device_id": envelope.origin_device_id,
    }


def decode_envelope(message) -> SyncEnvelope:
    if not isinstance(message, dict):
        raise EnvelopeError(f"Expected a message dict, got {type(message).__name__}")
    version = message.get("schema_version")
    if version != WIRE_VERSION:
        raise EnvelopeError(f"Unsupported envelope schema version {version!r}")
    record_cls = _TYPES.get(message.get("type"))
    if record_cls is None:
        raise EnvelopeError(f"Unknown envelope type {message.get('type')!r}")
    try:
        record = record_cls.from_dict(message["record"])
        origin_timestamp = float(message["origin_timestamp"])
        origin_device_id = message["origin_device_id"]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise EnvelopeError(f"Malformed {message.get('type')} envelope: {e}") from e
    if not math.isfinite(origin_timestamp):
        raise EnvelopeError(f"origin_timestamp must be finite, got {origin_timestamp!r}")
    if not isinstance(origin_device_id, str):
        raise EnvelopeError("origin_device_id must be a string")
    return SyncEnvelope(record, origin_timestamp, origin_device_id)


def dumps(envelope: SyncEnvelope) -> str:
    return json.dumps(encode_envelope(envelope))


def loads(text) -> SyncEnvelope:
    try:
        message = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise EnvelopeError(f"Envelope is not valid JSON: {e}") from e
    return decode_envelope(message)
