from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Literal, Mapping

from dotenv import load_dotenv

from databox.errors import ValidationError

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

StoreBackend = Literal["duckdb", "clickhouse"]
PipelineKind = Literal["marketplace", "liquidations", "whales", "raw"]

PIPELINE_KINDS: tuple[str, ...] = ("marketplace", "liquidations", "whales", "raw")


def _env_int(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(name, f"expected an integer, got {raw!r}") from e


def _load_env(env: Mapping[str, str] | None) -> Mapping[str, str]:
    if env is not None:
        return env
    load_dotenv()
    return os.environ


def validate_address(value: str, field: str = "address") -> str:
    """Return the lowercased address or raise `ValidationError`."""
    if not value or not ADDRESS_RE.match(value):
        raise ValidationError(field, f"expected 0x followed by 40 hex characters, got {value!r}")
    return value.lower()


@dataclass(frozen=True)
class ChainSourceConfig:
    """Configuration for the RPC polling chain source."""

    rpc_url: str
    step: int = 1_000
    confirmations: int = 0
    poll_interval_s: float = 2.0
    max_reorg_depth: int = 64
    timeout_s: int = 20
    max_attempts: int = 3
    retry_backoff_s: float = 0.8

    def __post_init__(self) -> None:
        if not self.rpc_url.startswith(("http://", "https://")):
            raise ValidationError("rpc_url", "must use http or https")
        if self.step <= 0:
            raise ValidationError("step", "must be positive")
        if self.confirmations < 0:
            raise ValidationError("confirmations", "cannot be negative")
        if self.max_attempts < 1:
            raise ValidationError("max_attempts", "must be at least 1")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ChainSourceConfig:
        env = _load_env(env)
        rpc_url = env.get("RPC_URL")
        if not rpc_url:
            raise ValidationError("RPC_URL", "is required")
        return cls(
            rpc_url=rpc_url,
            step=_env_int(env, "DATABOX_STEP", 1_000),
            confirmations=_env_int(env, "DATABOX_CONFIRMATIONS", 0),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Configuration for the columnar store backend."""

    backend: StoreBackend = "duckdb"
    duckdb_path: str = ":memory:"
    clickhouse_url: str = "http://localhost:8123"
    clickhouse_user: str = "default"
    clickhouse_password: str = "password"
    clickhouse_database: str = "default"
    timeout_s: int = 60

    def __post_init__(self) -> None:
        if self.backend not in ("duckdb", "clickhouse"):
            raise ValidationError("backend", f"unknown store backend {self.backend!r}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> StoreConfig:
        env = _load_env(env)
        return cls(
            backend=env.get("DATABOX_STORE", "duckdb"),  # type: ignore[arg-type]
            duckdb_path=env.get("DATABOX_DUCKDB_PATH", ":memory:"),
            clickhouse_url=env.get("CLICKHOUSE_URL", "http://localhost:8123"),
            clickhouse_user=env.get("CLICKHOUSE_USER", "default"),
            clickhouse_password=env.get("CLICKHOUSE_PASSWORD", "password"),
            clickhouse_database=env.get("CLICKHOUSE_DATABASE", "default"),
        )


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for one indexing pipeline instance."""

    name: str
    contract_address: str
    from_block: int
    kind: PipelineKind = "marketplace"
    to_block: int | None = None
    commit_attempts: int = 5
    commit_backoff_s: float = 0.8
    resume: bool = True
    signatures: tuple[str, ...] = ()  # custom event signatures for kind="raw"
    table: str | None = None  # override the default target table for kind="raw"

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("name", "cannot be empty")
        object.__setattr__(self, "contract_address", validate_address(self.contract_address, "contract_address"))
        if self.from_block < 0:
            raise ValidationError("from_block", "cannot be negative")
        if self.to_block is not None and self.to_block < self.from_block:
            raise ValidationError("to_block", "must be >= from_block")
        if self.kind not in PIPELINE_KINDS:
            raise ValidationError("kind", f"expected one of {', '.join(PIPELINE_KINDS)}")
        if self.commit_attempts < 1:
            raise ValidationError("commit_attempts", "must be at least 1")

    @classmethod
    def from_env(
        cls,
        name: str,
        kind: PipelineKind = "marketplace",
        env: Mapping[str, str] | None = None,
    ) -> PipelineConfig:
        env = _load_env(env)
        address = env.get("CONTRACT_ADDRESS")
        if not address:
            raise ValidationError("CONTRACT_ADDRESS", "is required")
        return cls(
            name=name,
            contract_address=address,
            from_block=_env_int(env, "FROM_BLOCK", 0),
            to_block=_env_int(env, "TO_BLOCK", None),
            kind=kind,
        )
