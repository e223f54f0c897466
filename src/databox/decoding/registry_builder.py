"""Registry builder utilities for creating event registries from signatures.

This module provides the core tools for building EventRegistry instances:
- Generic `make_registry()` function for single or multiple signatures
- Signature parsing helpers for converting Solidity event signatures to EventSchema

Signatures may be given directly, which is how events of proxies and other
unverified contracts (no ABI to look up) get registered.
"""

from __future__ import annotations

from collections.abc import Iterable

from databox.decoding.specs import AbiType, EventRegistry, EventSchema, FieldSpec
from databox.errors import ValidationError


def _split_params(params_str: str) -> list[str]:
    """Split the parameter list by commas while respecting nested parentheses."""
    items: list[str] = []
    depth = 0
    buf: list[str] = []
    for ch in params_str:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            items.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
    if buf:
        items.append("".join(buf).strip())
    return [i for i in items if i]


def _parse_param(p: str, fallback_name: str) -> FieldSpec:
    """Parse one parameter fragment such as `address indexed owner`."""
    tokens = p.split()
    indexed = "indexed" in tokens
    tokens = [t for t in tokens if t != "indexed"]
    if not tokens or len(tokens) > 2:
        raise ValidationError("signature", f"cannot parse parameter {p!r}")
    name = tokens[1] if len(tokens) == 2 else fallback_name
    return FieldSpec(name=name, type=AbiType.parse(tokens[0]), indexed=indexed)


def event_schema_from_signature(signature: str) -> EventSchema:
    """Build an EventSchema from a Solidity event signature string.

    Example input:
      "DataUploaded(string pieceCid, string name, uint256 priceUSDC)"
    """
    sig = signature.strip()
    open_paren = sig.find("(")
    close_paren = sig.rfind(")")
    if open_paren <= 0 or close_paren < open_paren or close_paren != len(sig) - 1:
        raise ValidationError("signature", f"invalid event signature: {signature!r}")
    name = sig[:open_paren].strip()
    params = _split_params(sig[open_paren + 1 : close_paren])
    fields = tuple(_parse_param(part, fallback_name=f"arg{i}") for i, part in enumerate(params))
    return EventSchema(name=name, fields=fields)


def add_event_schema(registry: EventRegistry, schema: EventSchema) -> None:
    """Insert one schema into the registry keyed by lowercased topic0."""
    registry[schema.topic0.lower()] = schema


def make_registry(signatures: str | Iterable[str]) -> EventRegistry:
    """Create a registry from one or multiple event signatures."""
    sig_list = [signatures] if isinstance(signatures, str) else list(signatures)
    reg: EventRegistry = {}
    for signature in sig_list:
        add_event_schema(reg, event_schema_from_signature(signature))
    return reg
