from blockfeed.ports.chain_client_port import BlockCallback, ChainClientPort
from blockfeed.core.dto import RawBlock, RawTransaction
from blockfeed.core.errors import DataSourceError
from typing import Optional, Dict, Iterable, List, Set
import threading

class StaticChainAdapter(ChainClientPort):
    def __init__(self,
                 blocks: Optional[Iterable[RawBlock]] = None,
                 transactions: Optional[Iterable[RawTransaction]] = None,
                 head: Optional[int] = None,
                 failing_blocks: Optional[Set[int]] = None,
                 failing_txs: Optional[Set[str]] = None,
                 unreachable: bool = False,
                 ):
        self._blocks: Dict[int, RawBlock] = {b.number: b for b in (blocks or [])}
        self._txs: Dict[str, RawTransaction] = {t.tx_hash: t for t in (transactions or [])}
        self._head = head if head is not None else max(self._blocks, default=0)
        self._failing_blocks = set(failing_blocks or ())
        self._failing_txs = set(failing_txs or ())
        self._unreachable = unreachable
        self._callbacks: Dict[int, BlockCallback] = {}
        self._next_handle = 1
        self._lock = threading.Lock()
        self.closed = False
        self.tx_requests: List[str] = []

    def add_block(self, block: RawBlock, transactions: Iterable[RawTransaction] = ()):
        with self._lock:
            self._blocks[block.number] = block
            for t in transactions:
                self._txs[t.tx_hash] = t
            self._head = max(self._head, block.number)

    def emit_block(self, number: int):
        """Deliver a block number to every subscriber, like a provider would."""
        with self._lock:
            callbacks = list(self._callbacks.values())
        for cb in callbacks:
            cb(number)

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def get_block_number(self):
        if self._unreachable:
            raise DataSourceError("static chain is unreachable")
        return self._head

    def get_block(self, number):
        if number in self._failing_blocks:
            raise DataSourceError(f"block {number} unavailable")
        return self._blocks.get(int(number))

    def get_transaction(self, tx_hash):
        with self._lock:
            self.tx_requests.append(tx_hash)
        if tx_hash in self._failing_txs:
            raise DataSourceError(f"transaction {tx_hash} unavailable")
        return self._txs.get(tx_hash)

    def on_new_block(self, callback):
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._callbacks[handle] = callback
        return handle

    def cancel_subscription(self, handle):
        with self._lock:
            self._callbacks.pop(handle, None)

    def close(self):
        with self._lock:
            self._callbacks.clear()
        self.closed = True
