"""Event decoding with typed schemas.

This package provides:
- Schema system (AbiType, FieldSpec, EventSchema, EventRegistry)
- Decoder that translates raw logs into DecodedRecord objects
- Registry builders from signatures or ABI JSON
- Pre-built registries for the indexed contracts
"""

from databox.decoding.abi import get_events_from_abi, make_registry_from_abi
from databox.decoding.decoder import DecodeResult, decode_batch, decode_event, decode_log
from databox.decoding.registry_builder import add_event_schema, event_schema_from_signature, make_registry
from databox.decoding.specs import AbiKind, AbiType, EventRegistry, EventSchema, FieldSpec

__all__ = [
    "get_events_from_abi",
    "make_registry_from_abi",
    "DecodeResult",
    "decode_batch",
    "decode_event",
    "decode_log",
    "add_event_schema",
    "event_schema_from_signature",
    "make_registry",
    "AbiKind",
    "AbiType",
    "EventRegistry",
    "EventSchema",
    "FieldSpec",
]
