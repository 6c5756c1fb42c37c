from __future__ import annotations

import json
from typing import Iterable, Optional, TextIO

from blockfeed.config.networks import NetworkConfig
from blockfeed.core.enums import TxType
from blockfeed.core.models import AlertEvent, EngineSnapshot, Transaction
from blockfeed.io.schemas import alert_to_dict, snapshot_to_dict


_TYPE_TAGS = {
    TxType.TRANSFER: "XFER",
    TxType.CONTRACT_CREATION: "DEPLOY",
    TxType.OTHER: "CALL",
}


def short(addr: Optional[str]) -> str:
    if not addr:
        return "(new contract)"
    return addr if len(addr) <= 14 else f"{addr[:6]}...{addr[-4:]}"


def format_amount(value: str) -> str:
    """Four decimals for display, more only when that would show zero."""
    try:
        amount = float(value)
    except ValueError:
        return value
    if 0 < amount < 0.0001:
        return f"{amount:.8f}"
    return f"{amount:.4f}"


def format_transaction(t: Transaction, symbol: str) -> str:
    line = (
        f"{_TYPE_TAGS[t.type]:<6} {short(t.hash)}  "
        f"{short(t.from_address)} -> {short(t.to_address)}  "
        f"{format_amount(t.value)} {symbol}"
    )
    if t.sound_delay is not None:
        line += f"  (alert +{t.sound_delay}ms)"
    return line


def format_stats(s: EngineSnapshot) -> str:
    return (
        f"block {s.stats.current_block} • "
        f"{s.stats.tps:.1f} tps • "
        f"{s.stats.total_transactions} txs total • "
        f"{len(s.feed)} in feed"
    )


def write_transactions(txs: Iterable[Transaction], network: NetworkConfig, out: TextIO) -> int:
    n = 0
    for t in txs:
        out.write(format_transaction(t, network.symbol) + "\n")
        n += 1
    out.flush()
    return n


def write_snapshot_json(snapshot: EngineSnapshot, out: TextIO, network: Optional[NetworkConfig] = None) -> None:
    out.write(json.dumps(snapshot_to_dict(snapshot, network)) + "\n")
    out.flush()


def write_alert_json(alert: AlertEvent, out: TextIO) -> None:
    out.write(json.dumps({"alert": alert_to_dict(alert)}) + "\n")
    out.flush()
