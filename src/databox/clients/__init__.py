"""Clients for external collaborators: JSON-RPC node, chain sources, Etherscan."""

from databox.clients.rpc import RPC, RawLog
from databox.clients.source import RpcChainSource, StaticChainSource

__all__ = [
    "RPC",
    "RawLog",
    "RpcChainSource",
    "StaticChainSource",
]
