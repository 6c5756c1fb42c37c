import itertools
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

import requests

from blockfeed.config.settings import (
    RPC_MAX_RETRIES,
    RPC_POLL_INTERVAL_SEC,
    RPC_REQUESTS_PER_SEC,
    RPC_TIMEOUT_SEC,
)

from blockfeed.adapters.chain.rate_limiter import SimpleRateLimiter, backoff_sleep
from blockfeed.config.networks import NetworkConfig
from blockfeed.core.errors import DataSourceError, RateLimitError
from blockfeed.ports.chain_client_port import BlockCallback, ChainClientPort
from blockfeed.core.dto import RawBlock, RawTransaction


logger = logging.getLogger(__name__)


class JsonRpcChainAdapter(ChainClientPort):
    """
    EVM JSON-RPC 2.0 client over HTTP.

    New blocks are discovered by polling eth_blockNumber on a background
    thread per subscription; each newly seen height is handed to the callback
    in increasing order.
    """

    MAX_CATCHUP_BLOCKS = 64

    def __init__(
        self,
        rpc_url: str,
        timeout_sec: float = RPC_TIMEOUT_SEC,
        max_retries: int = RPC_MAX_RETRIES,
        requests_per_sec: float = RPC_REQUESTS_PER_SEC,
        poll_interval_sec: float = RPC_POLL_INTERVAL_SEC,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout_sec
        self._max_retries = max(1, max_retries)
        self._poll_interval = poll_interval_sec

        self._rl = SimpleRateLimiter(requests_per_sec)
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

        self._subs_lock = threading.Lock()
        self._subs: Dict[int, Tuple[threading.Event, threading.Thread]] = {}
        self._handles = itertools.count(1)

    @classmethod
    def for_network(cls, network: NetworkConfig) -> "JsonRpcChainAdapter":
        return cls(network.rpc_url)

    # ---------- internal ----------

    def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        last_err: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                self._rl.wait()
                resp = self._session.post(
                    self._rpc_url,
                    json=payload,
                    timeout=self._timeout,
                )
                if resp.status_code == 429:
                    raise RateLimitError(f"{method}: HTTP 429")
                resp.raise_for_status()
                data = resp.json()

            except (requests.RequestException, RateLimitError, ValueError) as e:
                last_err = e
                logger.debug("rpc %s attempt %d failed: %s", method, attempt + 1, e)
                if attempt + 1 < self._max_retries:
                    backoff_sleep(attempt)
                continue

            if not isinstance(data, dict):
                raise DataSourceError(f"Invalid JSON-RPC response for {method}: {data!r}")

            err = data.get("error")
            if err:
                message = err.get("message") if isinstance(err, dict) else err
                raise DataSourceError(f"{method} failed: {message}")

            return data.get("result")

        raise DataSourceError(f"{method} failed after {self._max_retries} attempt(s): {last_err}")

    @staticmethod
    def _quantity(val: Any) -> int:
        if isinstance(val, int):
            return val
        if isinstance(val, str):
            try:
                return int(val, 16) if val.lower().startswith("0x") else int(val)
            except ValueError as e:
                raise DataSourceError(f"Invalid quantity: {val!r}") from e
        raise DataSourceError(f"Invalid quantity: {val!r}")

    # ---------- port methods ----------

    def get_block_number(self) -> int:
        return self._quantity(self._call("eth_blockNumber"))

    def get_block(self, number: int) -> Optional[RawBlock]:
        res = self._call("eth_getBlockByNumber", [hex(int(number)), False])
        if not res:
            return None
        if not isinstance(res, dict):
            raise DataSourceError(f"Invalid block result: {res!r}")

        hashes = []
        for t in res.get("transactions") or []:
            # providers may return full objects even when hashes were asked for
            h = t if isinstance(t, str) else t.get("hash") if isinstance(t, dict) else None
            if h:
                hashes.append(h)

        return RawBlock(
            number=self._quantity(res.get("number", number)),
            timestamp=self._quantity(res.get("timestamp", 0)),
            transaction_hashes=tuple(hashes),
        )

    def get_transaction(self, tx_hash: str) -> Optional[RawTransaction]:
        res = self._call("eth_getTransactionByHash", [tx_hash])
        if not res:
            return None
        if not isinstance(res, dict):
            raise DataSourceError(f"Invalid transaction result for {tx_hash}: {res!r}")

        block = res.get("blockNumber")
        return RawTransaction(
            tx_hash=res.get("hash") or tx_hash,
            from_address=res.get("from") or "",
            to_address=res.get("to") or None,
            value_wei=self._quantity(res.get("value") or "0x0"),
            data=res.get("input") or res.get("data") or "0x",
            block_number=self._quantity(block) if block is not None else None,
        )

    def on_new_block(self, callback: BlockCallback) -> int:
        handle = next(self._handles)
        stop = threading.Event()
        thread = threading.Thread(
            target=self._poll_loop,
            args=(callback, stop),
            name=f"blockfeed-poll-{handle}",
            daemon=True,
        )
        with self._subs_lock:
            self._subs[handle] = (stop, thread)
        thread.start()
        return handle

    def cancel_subscription(self, handle: int) -> None:
        with self._subs_lock:
            sub = self._subs.pop(handle, None)
        if sub is None:
            return
        stop, thread = sub
        stop.set()
        if thread is not threading.current_thread():
            thread.join(timeout=self._timeout + self._poll_interval)

    def close(self) -> None:
        with self._subs_lock:
            handles = list(self._subs)
        for h in handles:
            self.cancel_subscription(h)
        self._session.close()

    def _poll_loop(self, callback: BlockCallback, stop: threading.Event) -> None:
        last: Optional[int] = None
        wait = 0.0

        while not stop.wait(wait):
            wait = self._poll_interval
            try:
                head = self.get_block_number()
            except DataSourceError as e:
                logger.warning("block poll failed: %s", e)
                continue
            except Exception:
                logger.exception("unexpected error while polling for new blocks")
                continue

            if last is None:
                last = head
                continue
            if head <= last:
                continue

            start = max(last + 1, head - self.MAX_CATCHUP_BLOCKS + 1)
            if start > last + 1:
                logger.debug("poller skipped %d block(s) behind head %d", start - last - 1, head)

            for n in range(start, head + 1):
                if stop.is_set():
                    return
                try:
                    callback(n)
                except Exception:
                    logger.exception("block callback failed for block %d", n)
            last = head
