from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from blockfeed.config import settings
from blockfeed.core.errors import ConfigError


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    rpc_url: str
    chain_id: int
    symbol: str
    explorer_url: str


NETWORKS: Dict[str, NetworkConfig] = {
    "testnet": NetworkConfig(
        name="Somnia Dream Testnet",
        rpc_url=settings.TESTNET_RPC_URL,
        chain_id=50312,
        symbol="STT",
        explorer_url="https://shannon-explorer.somnia.network",
    ),
    "mainnet": NetworkConfig(
        name="Somnia Mainnet",
        rpc_url=settings.MAINNET_RPC_URL,
        chain_id=50311,
        symbol="SOMI",
        explorer_url="https://explorer.somnia.network",
    ),
}


def get_network(key: str) -> NetworkConfig:
    try:
        return NETWORKS[key.lower()]
    except KeyError:
        raise ConfigError(f"Unknown network {key!r} (expected one of: {', '.join(NETWORKS)})") from None


def explorer_tx_url(network: NetworkConfig, tx_hash: str) -> str:
    return f"{network.explorer_url.rstrip('/')}/tx/{tx_hash}"
