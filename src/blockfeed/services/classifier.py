from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from blockfeed.core.dto import RawTransaction
from blockfeed.core.enums import TxType
from blockfeed.core.models import Transaction


logger = logging.getLogger(__name__)

WEI_DECIMALS = 18

# transfer(address,uint256)
TRANSFER_SELECTOR = "0xa9059cbb"
# "0x" + selector + two 32-byte words
TRANSFER_CALL_HEX_LEN = 2 + 8 + 64 + 64

EMPTY_CALL_DATA = {"", "0x", "0x0"}

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class Transfer:
    amount: str


@dataclass(frozen=True)
class ContractCreation:
    value: str


@dataclass(frozen=True)
class Other:
    value: str


Classification = Union[Transfer, ContractCreation, Other]


def is_address(value: Optional[str]) -> bool:
    return bool(value) and bool(_ADDRESS_RE.match(value))


def format_units(value: int, decimals: int = WEI_DECIMALS) -> str:
    """
    Exact fixed-point rendering of an integer amount in smallest units.

    Always keeps at least one fractional digit: 0 -> "0.0", 25 * 10**17 -> "2.5".
    """
    if value < 0:
        raise ValueError("amount must be non-negative")
    whole, frac = divmod(int(value), 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0") or "0"
    return f"{whole}.{frac_str}"


def decode_token_transfer(tx: RawTransaction, token_address: str) -> Optional[str]:
    """
    Amount of a transfer(address,uint256) call to token_address, or None when
    the transaction is anything else.
    """
    if (tx.to_address or "").lower() != token_address.lower():
        return None

    data = (tx.data or "").lower()
    if not data.startswith(TRANSFER_SELECTOR) or len(data) < TRANSFER_CALL_HEX_LEN:
        return None

    # amount is the second argument word
    amount_hex = data[74:TRANSFER_CALL_HEX_LEN]
    try:
        raw = int(amount_hex, 16)
    except ValueError:
        return None
    return format_units(raw)


def classify(tx: RawTransaction, monitored_token_address: Optional[str] = None) -> Optional[Classification]:
    if monitored_token_address:
        amount = decode_token_transfer(tx, monitored_token_address)
        return Transfer(amount) if amount is not None else None

    value = format_units(tx.value_wei)
    if tx.to_address is None:
        return ContractCreation(value)
    if (tx.data or "").lower() in EMPTY_CALL_DATA:
        return Transfer(value)
    return Other(value)


def to_transaction(tx: RawTransaction, c: Classification, timestamp: int) -> Transaction:
    if isinstance(c, Transfer):
        tx_type, value = TxType.TRANSFER, c.amount
    elif isinstance(c, ContractCreation):
        tx_type, value = TxType.CONTRACT_CREATION, c.value
    elif isinstance(c, Other):
        tx_type, value = TxType.OTHER, c.value
    else:
        raise TypeError(f"Unknown classification: {c!r}")

    return Transaction(
        hash=tx.tx_hash,
        from_address=tx.from_address,
        to_address=tx.to_address,
        value=value,
        timestamp=timestamp,
        type=tx_type,
    )


class TransactionClassifier:
    """
    Labels fetched transactions, either as native activity or, when a token
    address is monitored, as transfers of that single ERC-20 token.
    """

    def __init__(self, monitored_token_address: Optional[str] = None) -> None:
        token = (monitored_token_address or "").strip() or None
        if token and not is_address(token):
            logger.warning("ignoring malformed token address %r; monitoring native transfers", token)
            token = None
        self.monitored_token_address = token.lower() if token else None

    def classify_batch(self, txs: Sequence[RawTransaction], base_timestamp: int) -> List[Transaction]:
        out: List[Transaction] = []
        for tx in txs:
            c = classify(tx, self.monitored_token_address)
            if c is None:
                continue
            # sequential capture timestamps keep fetch order sortable
            out.append(to_transaction(tx, c, base_timestamp + len(out)))
        return out
