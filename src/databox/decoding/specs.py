"""Event schema primitives and registry typing.

Defines lightweight dataclasses to describe how to decode events:
- `AbiType`: tagged union over the supported ABI types (parsed once, at
  schema build time; unknown tags are rejected there, not at decode time)
- `FieldSpec`: one named event parameter (type + indexed flag)
- `EventSchema`: ordered fields of one event, with its canonical signature
  and topic0
- `EventRegistry`: mapping from topic0 → EventSchema
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from eth_utils import keccak

from databox.errors import ValidationError

_SIZED_RE = re.compile(r"^(uint|int|bytes)(\d*)$")


class AbiKind(str, Enum):
    ADDRESS = "address"
    BOOL = "bool"
    STRING = "string"
    BYTES = "bytes"
    UINT = "uint"
    INT = "int"
    FIXED_BYTES = "fixed_bytes"


@dataclass(frozen=True)
class AbiType:
    """One supported ABI type.

    `size` is the bit width for `uint`/`int` and the byte width for
    fixed-size `bytesN`; it is None for the other kinds.
    """

    kind: AbiKind
    size: int | None = None

    @classmethod
    def parse(cls, text: str) -> AbiType:
        t = text.strip()
        match t:
            case "address":
                return cls(AbiKind.ADDRESS)
            case "bool":
                return cls(AbiKind.BOOL)
            case "string":
                return cls(AbiKind.STRING)
            case "bytes":
                return cls(AbiKind.BYTES)
        m = _SIZED_RE.match(t)
        if m is None:
            raise ValidationError("abi_type", f"unsupported ABI type {text!r}")
        base, digits = m.groups()
        if base == "bytes":
            n = int(digits)
            if not 1 <= n <= 32:
                raise ValidationError("abi_type", f"invalid fixed bytes width in {text!r}")
            return cls(AbiKind.FIXED_BYTES, n)
        bits = int(digits) if digits else 256
        if bits % 8 != 0 or not 8 <= bits <= 256:
            raise ValidationError("abi_type", f"invalid integer width in {text!r}")
        return cls(AbiKind.UINT if base == "uint" else AbiKind.INT, bits)

    @property
    def canonical(self) -> str:
        """Type string as used in signatures and by `eth_abi`."""
        match self.kind:
            case AbiKind.UINT:
                return f"uint{self.size}"
            case AbiKind.INT:
                return f"int{self.size}"
            case AbiKind.FIXED_BYTES:
                return f"bytes{self.size}"
        return self.kind.value

    @property
    def is_dynamic(self) -> bool:
        return self.kind in (AbiKind.STRING, AbiKind.BYTES)

    def normalize(self, value: Any) -> Any:
        """Convert a decoded `eth_abi` value to its stored representation."""
        match self.kind:
            case AbiKind.ADDRESS:
                return str(value).lower()
            case AbiKind.BYTES | AbiKind.FIXED_BYTES:
                return "0x" + bytes(value).hex()
        return value

    def from_topic(self, topic: bytes) -> Any:
        """Decode an indexed value from its 32-byte topic word.

        Static values are read from their own width of the word and any
        padding is ignored: addresses and numbers sit in the low bytes,
        `bytesN` in the high bytes. Dynamic types are hashed into the
        topic, so the hash itself is returned.
        """
        match self.kind:
            case AbiKind.STRING | AbiKind.BYTES:
                return "0x" + topic.hex()
            case AbiKind.ADDRESS:
                return "0x" + topic[-20:].hex()
            case AbiKind.BOOL:
                return topic[-1] != 0
            case AbiKind.FIXED_BYTES:
                return "0x" + topic[: self.size].hex()
        width = (self.size or 256) // 8
        return int.from_bytes(topic[-width:], "big", signed=self.kind is AbiKind.INT)

    def __str__(self) -> str:
        return self.canonical


@dataclass(frozen=True)
class FieldSpec:
    """Describe one event parameter."""

    name: str
    type: AbiType
    indexed: bool = False


@dataclass(frozen=True)
class EventSchema:
    """One event: name + ordered fields. topic0 is derived from the types."""

    name: str
    fields: tuple[FieldSpec, ...]
    topic0: str = field(init=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("event", "name cannot be empty")
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValidationError(self.name, "duplicate field names")
        if len(self.indexed_fields) > 3:
            raise ValidationError(self.name, "at most 3 indexed fields are allowed")
        object.__setattr__(self, "topic0", "0x" + keccak(text=self.signature).hex())

    @property
    def signature(self) -> str:
        """Canonical signature string, e.g. `Transfer(address,address,uint256)`."""
        return f"{self.name}({','.join(f.type.canonical for f in self.fields)})"

    @property
    def indexed_fields(self) -> list[FieldSpec]:
        return [f for f in self.fields if f.indexed]

    @property
    def data_fields(self) -> list[FieldSpec]:
        return [f for f in self.fields if not f.indexed]


# The full registry keyed by topic0 (lowercased 0x-hex).
EventRegistry = dict[str, EventSchema]


def get_registry_topic0s(registry: EventRegistry) -> list[str]:
    return list(registry.keys())


def get_schemas_by_name(schemas: Iterable[EventSchema]) -> dict[str, EventSchema]:
    return {s.name: s for s in schemas}
