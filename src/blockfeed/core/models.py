from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from blockfeed.core.enums import AlertLevel, ConnectionState, TxType



# Configuration model

@dataclass(frozen=True)
class ListenerConfig:
    """
    Run configuration for one listening engine.
    """

    network: str = "testnet"
    monitored_token_address: Optional[str] = None
    minimum_alert_amount: Decimal | int | float = Decimal("0.0005")
    enforce_minimum_alert: bool = True
    only_transfers: bool = False
    stagger_interval_ms: int = 600

    # bounds (keep defaults sane)
    feed_retention_size: int = 200
    rolling_window_size: int = 10
    max_transactions_per_block: int = 10
    block_queue_size: int = 32
    fetch_workers: int = 4



# Feed models

@dataclass(frozen=True)
class Transaction:

    hash: str
    from_address: str
    to_address: Optional[str]

    value: str                  # exact decimal string, 18-decimal scaling
    timestamp: int              # capture time in ms, ordering key only
    type: TxType

    sound_delay: Optional[int] = None   # ms; None = no alert

    @property
    def amount(self) -> Decimal:
        return Decimal(self.value)


@dataclass(frozen=True)
class NetworkStats:

    current_block: int = 0
    tps: float = 0.0
    total_transactions: int = 0


@dataclass(frozen=True)
class AlertEvent:

    tx_hash: str
    amount: Decimal
    delay_ms: int
    level: AlertLevel = AlertLevel.STANDARD


@dataclass(frozen=True)
class EngineSnapshot:
    """
    Read-only view handed to consumers after each processed block.
    """

    network: str
    feed: Tuple[Transaction, ...] = ()
    stats: NetworkStats = NetworkStats()
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_error: Optional[str] = None
    is_listening: bool = False
