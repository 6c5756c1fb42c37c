from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from blockfeed.config.networks import NetworkConfig, explorer_tx_url
from blockfeed.core.models import AlertEvent, EngineSnapshot, Transaction


def _dec_to_str(x: Decimal) -> str:
    # keep as string for JSON precision safety
    return format(x, "f")


def transaction_to_dict(t: Transaction, network: Optional[NetworkConfig] = None) -> Dict[str, Any]:
    d = {
        "hash": t.hash,
        "from": t.from_address,
        "to": t.to_address,
        "value": t.value,
        "timestamp": t.timestamp,
        "type": t.type.value,
        "sound_delay": t.sound_delay,
    }
    if network is not None:
        d["explorer_url"] = explorer_tx_url(network, t.hash)
    return d


def alert_to_dict(a: AlertEvent) -> Dict[str, Any]:
    return {
        "tx_hash": a.tx_hash,
        "amount": _dec_to_str(a.amount),
        "delay_ms": a.delay_ms,
        "level": a.level.value,
    }


def snapshot_to_dict(s: EngineSnapshot, network: Optional[NetworkConfig] = None) -> Dict[str, Any]:
    return {
        "network": s.network,
        "connection_state": s.connection_state.value,
        "last_error": s.last_error,
        "is_listening": s.is_listening,
        "stats": {
            "current_block": s.stats.current_block,
            "tps": s.stats.tps,
            "total_transactions": s.stats.total_transactions,
        },
        "feed": [transaction_to_dict(t, network) for t in s.feed],
    }
