from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Sequence, Tuple

from blockfeed.core.enums import AlertLevel, TxType
from blockfeed.core.models import AlertEvent, ListenerConfig, Transaction


@dataclass(frozen=True)
class AlertPolicy:
    minimum_amount: Decimal = Decimal("0.0005")
    enforce_minimum: bool = True     # False: positive amounts below the minimum still get a TINY alert
    only_transfers: bool = False
    stagger_interval_ms: int = 600

    @classmethod
    def from_config(cls, cfg: ListenerConfig) -> "AlertPolicy":
        return cls(
            minimum_amount=Decimal(str(cfg.minimum_alert_amount)),
            enforce_minimum=cfg.enforce_minimum_alert,
            only_transfers=cfg.only_transfers,
            stagger_interval_ms=int(cfg.stagger_interval_ms),
        )


def alert_level(tx: Transaction, policy: AlertPolicy) -> Optional[AlertLevel]:
    if policy.only_transfers and tx.type != TxType.TRANSFER:
        return None
    try:
        amount = tx.amount
    except InvalidOperation:
        return None
    if amount <= 0:
        return None
    if amount >= policy.minimum_amount:
        return AlertLevel.STANDARD
    if not policy.enforce_minimum:
        return AlertLevel.TINY
    return None


def schedule_alerts(
    batch: Sequence[Transaction],
    policy: AlertPolicy,
) -> Tuple[List[Transaction], List[AlertEvent]]:
    """
    Stagger alerts of one block's batch in fetch order.

    Returns the batch with sound_delay set on qualifying entries, and the
    AlertEvents for whoever renders them.
    """
    out: List[Transaction] = []
    alerts: List[AlertEvent] = []

    for tx in batch:
        level = alert_level(tx, policy)
        if level is None:
            out.append(tx)
            continue
        delay = len(alerts) * policy.stagger_interval_ms
        out.append(replace(tx, sound_delay=delay))
        alerts.append(AlertEvent(tx_hash=tx.hash, amount=tx.amount, delay_ms=delay, level=level))

    return out, alerts
