"""Event decoder: raw `LogEvent` → `DecodedRecord`.

Indexed fields come from `topics[1..]` in declaration order; non-indexed
fields are ABI-decoded together from `data`, also in declaration order.
Decoding is all-or-nothing: any mismatch raises `DecodeError` and no
partially aligned record is ever produced.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from databox.core.models import DecodedRecord, LogEvent
from databox.decoding.specs import EventRegistry, EventSchema
from databox.errors import DecodeError

logger = logging.getLogger(__name__)


def _hex_to_bytes(value: str) -> bytes:
    h = value[2:] if value[:2].lower() == "0x" else value
    return bytes.fromhex(h)


def decode_log(log: LogEvent, schema: EventSchema) -> DecodedRecord:
    """Decode one log against `schema` or raise `DecodeError`."""

    def fail(reason: str) -> DecodeError:
        return DecodeError(log.tx_hash, log.log_index, reason)

    if not log.topics:
        raise fail("log has no topics")
    if log.topics[0].lower() != schema.topic0:
        raise fail(f"topic0 does not match {schema.signature}")

    indexed = schema.indexed_fields
    if len(log.topics) != len(indexed) + 1:
        raise fail(f"expected {len(indexed)} indexed topics, got {len(log.topics) - 1}")

    topic_vals: dict[str, Any] = {}
    for spec, topic_hex in zip(indexed, log.topics[1:]):
        try:
            topic = _hex_to_bytes(topic_hex)
        except ValueError as e:
            raise fail(f"malformed topic hex for {spec.name}") from e
        if len(topic) != 32:
            raise fail(f"topic for {spec.name} is {len(topic)} bytes, expected 32")
        topic_vals[spec.name] = spec.type.from_topic(topic)

    data_specs = schema.data_fields
    try:
        data = _hex_to_bytes(log.data or "0x")
    except ValueError as e:
        raise fail("malformed data hex") from e

    try:
        decoded = abi_decode([s.type.canonical for s in data_specs], data) if data_specs else ()
    except (DecodingError, ValueError, OverflowError) as e:  # UnicodeDecodeError is a ValueError
        raise fail(f"ABI decode failed: {e}") from e

    data_vals = {s.name: s.type.normalize(v) for s, v in zip(data_specs, decoded)}

    # Re-assemble in declaration order
    values = {
        f.name: (topic_vals[f.name] if f.indexed else data_vals[f.name])
        for f in schema.fields
    }
    return DecodedRecord(event=schema.name, values=values, log=log)


def decode_event(log: LogEvent, registry: EventRegistry) -> DecodedRecord:
    """Look up the schema by topic0 and decode, or raise `DecodeError`."""
    topic0 = log.topic0
    schema = registry.get(topic0.lower()) if topic0 else None
    if schema is None:
        raise DecodeError(log.tx_hash, log.log_index, f"no schema registered for topic0 {topic0}")
    return decode_log(log, schema)


@dataclass(slots=True)
class DecodeResult:
    records: list[DecodedRecord] = field(default_factory=list)
    errors: list[DecodeError] = field(default_factory=list)


def decode_batch(logs: Iterable[LogEvent], registry: EventRegistry) -> DecodeResult:
    """Decode logs in the given order, isolating per-log failures."""
    out = DecodeResult()
    for log in logs:
        try:
            out.records.append(decode_event(log, registry))
        except DecodeError as e:
            logger.warning("skipping log %s#%d: %s", e.tx_hash, e.log_index, e.reason)
            out.errors.append(e)
    return out
