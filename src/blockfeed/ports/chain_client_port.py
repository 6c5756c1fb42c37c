from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional
from blockfeed.core.dto import RawBlock, RawTransaction

BlockCallback = Callable[[int], None]


class ChainClientPort(ABC):
    """
    Abstract Class for reading a chain's head, blocks and transactions.
    """

    # --- Head / blocks ---

    @abstractmethod
    def get_block_number(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_block(self, number: int) -> Optional[RawBlock]:
        raise NotImplementedError

    # --- Transactions ---

    @abstractmethod
    def get_transaction(self, tx_hash: str) -> Optional[RawTransaction]:
        raise NotImplementedError

    # --- New-block subscription ---

    @abstractmethod
    def on_new_block(self, callback: BlockCallback) -> int:
        """Register callback for new block numbers; returns a subscription handle."""
        raise NotImplementedError

    @abstractmethod
    def cancel_subscription(self, handle: int) -> None:
        raise NotImplementedError

    # --- release connection resources ---
    def close(self) -> None:
        return None
