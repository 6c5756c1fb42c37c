from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import CancelledError, ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, List, Optional, Sequence, Tuple

from blockfeed.config.networks import NetworkConfig, get_network
from blockfeed.core.dto import RawTransaction
from blockfeed.core.enums import ConnectionState
from blockfeed.core.errors import DataSourceError
from blockfeed.core.models import AlertEvent, EngineSnapshot, ListenerConfig, NetworkStats, Transaction
from blockfeed.ports.chain_client_port import ChainClientPort
from blockfeed.services.block_queue import BlockQueue
from blockfeed.services.classifier import TransactionClassifier
from blockfeed.services.feed import merge_feed, new_entries
from blockfeed.services.notification_scheduler import AlertPolicy, schedule_alerts
from blockfeed.services.stats_tracker import RollingStatsTracker


logger = logging.getLogger(__name__)

ChainFactory = Callable[[NetworkConfig], ChainClientPort]
SnapshotListener = Callable[[EngineSnapshot], None]
AlertListener = Callable[[AlertEvent], None]


class _Session:
    """
    State of one listening run. A fresh session is created on every start,
    so replacing it resets stats, windows and feed in one step.
    """

    def __init__(self, session_id: int, chain: ChainClientPort, cfg: ListenerConfig, started_at: float) -> None:
        self.id = session_id
        self.chain = chain
        self.queue = BlockQueue(cfg.block_queue_size)
        self.stats = RollingStatsTracker(cfg.rolling_window_size)
        self.executor = ThreadPoolExecutor(
            max_workers=max(1, cfg.fetch_workers),
            thread_name_prefix=f"blockfeed-fetch-{session_id}",
        )
        self.last_observed = started_at
        self.last_block: Optional[int] = None
        self.subscription: Optional[int] = None
        self.worker: Optional[threading.Thread] = None
        self.active = True


class BlockListenerService:
    """
    Live block ingestion for one network at a time.

    - connect(): probe the endpoint, no retries
    - start()/stop(): subscribe to new blocks and drive the pipeline
      (classify -> stats -> skip known hashes -> schedule alerts -> merge feed)
      once per block
    - consumers get immutable EngineSnapshot / AlertEvent objects only
    """

    QUEUE_POLL_SEC = 0.5

    def __init__(
        self,
        config: ListenerConfig,
        chain_factory: ChainFactory,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.cfg = config
        self._chain_factory = chain_factory
        self._clock = clock
        self._wall_clock = wall_clock

        self._network = get_network(config.network)
        self._classifier = TransactionClassifier(config.monitored_token_address)
        self._policy = AlertPolicy.from_config(config)

        self._lock = threading.RLock()
        self._session_ids = itertools.count(1)
        self._chain: Optional[ChainClientPort] = None
        self._session: Optional[_Session] = None

        self._state = ConnectionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._feed: Tuple[Transaction, ...] = ()
        self._stats = NetworkStats()

        self._snapshot_listeners: List[SnapshotListener] = []
        self._alert_listeners: List[AlertListener] = []

    # -------------------------
    # Consumers
    # -------------------------

    def add_snapshot_listener(self, listener: SnapshotListener) -> None:
        self._snapshot_listeners.append(listener)

    def add_alert_listener(self, listener: AlertListener) -> None:
        self._alert_listeners.append(listener)

    def snapshot(self) -> EngineSnapshot:
        with self._lock:
            return self._snapshot_locked()

    @property
    def network(self) -> NetworkConfig:
        return self._network

    @property
    def is_listening(self) -> bool:
        return self._session is not None

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    # -------------------------
    # Lifecycle
    # -------------------------

    def connect(self) -> bool:
        with self._lock:
            if self._chain is not None and self._state == ConnectionState.CONNECTED:
                return True
            self._state = ConnectionState.CONNECTING
            self._last_error = None
            network = self._network
        self._publish()

        chain = self._chain_factory(network)
        try:
            head = chain.get_block_number()
        except Exception as exc:
            logger.warning("failed to connect to %s: %s", network.name, exc)
            self._release(chain)
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
                self._last_error = f"Unable to connect to {network.name}. The network may not be available yet."
            self._publish()
            return False

        with self._lock:
            if self._network is not network:
                # network switched while probing
                self._release(chain)
                return False
            self._chain = chain
            self._state = ConnectionState.CONNECTED
        logger.info("connected to %s (chain id %d) at block %d", network.name, network.chain_id, head)
        self._publish()
        return True

    def start(self) -> bool:
        with self._lock:
            if self._session is not None:
                return True
            if self._chain is None or self._state != ConnectionState.CONNECTED:
                logger.warning("cannot start listening on %s: not connected", self._network.name)
                return False

            session = _Session(next(self._session_ids), self._chain, self.cfg, self._clock())
            self._session = session
            self._feed = ()
            self._stats = NetworkStats()

        try:
            session.subscription = session.chain.on_new_block(session.queue.put)
        except Exception as exc:
            logger.warning("block subscription failed on %s: %s", self._network.name, exc)
            self._end_session(session)
            with self._lock:
                if self._session is session:
                    self._session = None
                self._state = ConnectionState.DISCONNECTED
                self._last_error = f"Lost connection to {self._network.name}: unable to subscribe to new blocks."
            self._publish()
            return False

        logger.info("listening on %s (session %d)", self._network.name, session.id)
        # consumers see the reset state before the first block
        self._publish()

        session.worker = threading.Thread(
            target=self._run,
            args=(session,),
            name=f"blockfeed-session-{session.id}",
            daemon=True,
        )
        session.worker.start()
        return True

    def stop(self) -> None:
        with self._lock:
            session = self._session
            if session is None:
                return
            self._session = None
        self._end_session(session)
        logger.info("stopped listening on %s (session %d)", self._network.name, session.id)
        self._publish()

    def switch_network(self, network_key: str) -> bool:
        network = get_network(network_key)
        was_listening = self.is_listening
        self.stop()

        with self._lock:
            old_chain, self._chain = self._chain, None
            self._network = network
            self.cfg = replace(self.cfg, network=network_key.lower())
            self._state = ConnectionState.DISCONNECTED
            self._last_error = None
            self._feed = ()
            self._stats = NetworkStats()
        if old_chain is not None:
            self._release(old_chain)

        if not self.connect():
            return False
        if was_listening:
            return self.start()
        return True

    def close(self) -> None:
        self.stop()
        with self._lock:
            chain, self._chain = self._chain, None
            self._state = ConnectionState.DISCONNECTED
        if chain is not None:
            self._release(chain)

    # -------------------------
    # Pipeline
    # -------------------------

    def _run(self, session: _Session) -> None:
        try:
            head = session.chain.get_block_number()
        except DataSourceError as exc:
            logger.warning("could not read head block: %s", exc)
        except Exception:
            logger.exception("unexpected error reading head block")
        else:
            self._guarded_process(session, head)

        while session.active:
            number = session.queue.get(timeout=self.QUEUE_POLL_SEC)
            if number is None:
                continue
            self._guarded_process(session, number)

    def _guarded_process(self, session: _Session, number: int) -> None:
        try:
            self._process_block(session, number)
        except Exception:
            logger.exception("error handling block %d", number)

    def _process_block(self, session: _Session, number: int) -> bool:
        if session.last_block is not None:
            if number <= session.last_block:
                logger.debug("skipping block %d (already at %d)", number, session.last_block)
                return False
            if number > session.last_block + 1:
                logger.warning("missed %d block(s) before %d", number - session.last_block - 1, number)

        try:
            block = session.chain.get_block(number)
        except DataSourceError as exc:
            logger.warning("dropping block %d: %s", number, exc)
            return False
        if block is None:
            logger.warning("dropping block %d: not found", number)
            return False

        now = self._clock()
        duration_ms = (now - session.last_observed) * 1000
        session.last_observed = now
        session.last_block = number

        hashes = block.transaction_hashes[: self.cfg.max_transactions_per_block]
        raw_txs = self._fetch_transactions(session, hashes)
        if not session.active:
            return False

        batch = self._classifier.classify_batch(raw_txs, int(self._wall_clock() * 1000))
        stats = session.stats.record_block(number, duration_ms, block.transaction_count)

        with self._lock:
            if self._session is not session or not session.active:
                logger.debug("discarding block %d from superseded session %d", number, session.id)
                return False
            # hashes already in the feed get neither a new entry nor an alert
            batch = new_entries(self._feed, batch)
            batch, alerts = schedule_alerts(batch, self._policy)
            self._feed = merge_feed(self._feed, batch, self.cfg.feed_retention_size)
            self._stats = stats
            snapshot = self._snapshot_locked()

        logger.debug(
            "block %d: %d/%d tx fetched, %d in feed batch, %d alert(s)",
            number, len(raw_txs), block.transaction_count, len(batch), len(alerts),
        )
        self._emit(snapshot, alerts)
        return True

    def _fetch_transactions(self, session: _Session, hashes: Sequence[str]) -> List[RawTransaction]:
        def fetch(tx_hash: str) -> Optional[RawTransaction]:
            try:
                tx = session.chain.get_transaction(tx_hash)
            except DataSourceError as exc:
                logger.warning("dropping transaction %s: %s", tx_hash, exc)
                return None
            except Exception:
                logger.exception("dropping transaction %s", tx_hash)
                return None
            if tx is None:
                logger.debug("transaction %s not found", tx_hash)
            return tx

        try:
            # map keeps hash order regardless of completion order
            results = list(session.executor.map(fetch, hashes))
        except (RuntimeError, CancelledError):
            if session.active:
                raise
            return []
        return [t for t in results if t is not None]

    # -------------------------
    # Helpers
    # -------------------------

    def _end_session(self, session: _Session) -> None:
        session.active = False
        if session.subscription is not None:
            try:
                session.chain.cancel_subscription(session.subscription)
            except Exception as exc:
                logger.warning("failed to cancel block subscription: %s", exc)
        session.queue.close()
        session.executor.shutdown(wait=False, cancel_futures=True)
        if session.worker is not None and session.worker is not threading.current_thread():
            session.worker.join(timeout=self.QUEUE_POLL_SEC * 4)

    @staticmethod
    def _release(chain: ChainClientPort) -> None:
        try:
            chain.close()
        except Exception as exc:
            logger.warning("failed to close chain client: %s", exc)

    def _snapshot_locked(self) -> EngineSnapshot:
        return EngineSnapshot(
            network=self.cfg.network,
            feed=self._feed,
            stats=self._stats,
            connection_state=self._state,
            last_error=self._last_error,
            is_listening=self._session is not None,
        )

    def _publish(self) -> None:
        self._emit(self.snapshot(), ())

    def _emit(self, snapshot: EngineSnapshot, alerts: Sequence[AlertEvent]) -> None:
        for listener in list(self._snapshot_listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("snapshot listener failed")
        for alert in alerts:
            for listener in list(self._alert_listeners):
                try:
                    listener(alert)
                except Exception:
                    logger.exception("alert listener failed")
