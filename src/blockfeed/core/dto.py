from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class RawBlock:
    number: int
    timestamp: int                      # chain time, unix seconds
    transaction_hashes: Tuple[str, ...]

    @property
    def transaction_count(self) -> int:
        return len(self.transaction_hashes)


@dataclass(frozen=True)
class RawTransaction:
    tx_hash: str
    from_address: str
    to_address: Optional[str]           # None for contract creation
    value_wei: int                      # native value in smallest unit
    data: str                           # hex call data, "0x" when empty
    block_number: Optional[int] = None
