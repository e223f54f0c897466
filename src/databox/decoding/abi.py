import json
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Literal

import pydantic
from pydantic import BaseModel

from databox.decoding.registry_builder import add_event_schema
from databox.errors import ValidationError
from databox.decoding.specs import AbiType, EventRegistry, EventSchema, FieldSpec

logger = logging.getLogger(__name__)


class AbiInput(BaseModel):
    indexed: bool = False
    internalType: str = ""
    name: str = ""
    type: str


class AbiEvent(BaseModel):
    anonymous: bool = False
    inputs: Sequence[AbiInput]
    name: str
    type: Literal["event"]


def get_event_signature(event: AbiEvent) -> str:
    return f"{event.name}({','.join(event_input.type for event_input in event.inputs)})"


def get_event_schema(event: AbiEvent) -> EventSchema:
    return EventSchema(
        name=event.name,
        fields=tuple(
            FieldSpec(
                name=event_input.name or f"arg{idx}",
                type=AbiType.parse(event_input.type),
                indexed=event_input.indexed,
            )
            for idx, event_input in enumerate(event.inputs)
        ),
    )


def describe_event(event: AbiEvent) -> str:
    """Human-readable summary: signature line followed by one line per input."""
    lines = [event.name, f"  Signature: {get_event_signature(event)}", "  Inputs:"]
    for event_input in event.inputs:
        flag = " (indexed)" if event_input.indexed else ""
        lines.append(f"  - {event_input.name}: {event_input.type}{flag}")
    return "\n".join(lines)


AbiJson = Iterable[dict[str, Any]]
AbiSpec = AbiJson | Path | str


def _load_abi(abi: AbiSpec) -> AbiJson:
    if isinstance(abi, Path):
        return json.loads(abi.read_text())
    if isinstance(abi, str):
        return json.loads(abi)
    return abi


def get_events_from_abi(abi: AbiSpec) -> dict[str, AbiEvent]:
    try:
        entries = _load_abi(abi)
        return {e["name"]: AbiEvent.model_validate(e) for e in entries if e.get("type") == "event"}
    except (json.JSONDecodeError, pydantic.ValidationError, KeyError, AttributeError) as exc:
        raise ValidationError("abi", f"malformed ABI JSON: {exc}") from exc


def make_registry_from_events(events: Iterable[AbiEvent]) -> EventRegistry:
    reg: EventRegistry = {}

    for event in events:
        if event.anonymous:
            # no topic0 to match on
            logger.warning("skipping anonymous event %s", event.name)
            continue
        add_event_schema(reg, get_event_schema(event))

    return reg


def make_registry_from_abi(abi: AbiSpec) -> EventRegistry:
    return make_registry_from_events(get_events_from_abi(abi).values())
