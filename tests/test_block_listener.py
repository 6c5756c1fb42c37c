import threading
import time
import unittest
from decimal import Decimal

from blockfeed.adapters.chain.static_chain_adapter import StaticChainAdapter
from blockfeed.core.dto import RawBlock, RawTransaction
from blockfeed.core.enums import ConnectionState, TxType
from blockfeed.core.models import ListenerConfig
from blockfeed.services.block_listener import BlockListenerService

ADDR_X = "0x" + "aa" * 20
ADDR_Y = "0x" + "bb" * 20
SENDER = "0x" + "cc" * 20


def _tx(tx_hash, to=ADDR_X, value=0, data="0x") -> RawTransaction:
    return RawTransaction(tx_hash=tx_hash, from_address=SENDER, to_address=to, value_wei=value, data=data)


def _block(number, txs) -> RawBlock:
    return RawBlock(number=number, timestamp=1_700_000_000 + number, transaction_hashes=tuple(t.tx_hash for t in txs))


def _scenario_txs():
    return [
        _tx("0xa", to=ADDR_X, value=25 * 10**17, data="0x"),
        _tx("0xb", to=ADDR_Y, value=0, data="0xa9059cbb1234"),
        _tx("0xc", to=None, value=10**18, data="0x6080604052"),
    ]


class _Recorder:
    def __init__(self) -> None:
        self.snapshots = []
        self.alerts = []
        self._cond = threading.Condition()

    def on_snapshot(self, snapshot) -> None:
        with self._cond:
            self.snapshots.append(snapshot)
            self._cond.notify_all()

    def on_alert(self, alert) -> None:
        with self._cond:
            self.alerts.append(alert)
            self._cond.notify_all()

    def wait_until(self, predicate, timeout: float = 5.0) -> None:
        with self._cond:
            ok = self._cond.wait_for(predicate, timeout)
        if not ok:
            raise AssertionError("timed out waiting for engine output")

    def wait_for_block(self, number: int, timeout: float = 5.0):
        self.wait_until(lambda: any(s.stats.current_block == number for s in self.snapshots), timeout)
        return [s for s in self.snapshots if s.stats.current_block == number][-1]

    def clear(self) -> None:
        with self._cond:
            self.snapshots.clear()
            self.alerts.clear()


class BlockListenerServiceTests(unittest.TestCase):
    def _make_service(self, chain, **overrides):
        defaults = dict(
            network="testnet",
            minimum_alert_amount=Decimal("0.0005"),
        )
        defaults.update(overrides)
        svc = BlockListenerService(ListenerConfig(**defaults), chain_factory=lambda net: chain)
        svc.QUEUE_POLL_SEC = 0.05
        rec = _Recorder()
        svc.add_snapshot_listener(rec.on_snapshot)
        svc.add_alert_listener(rec.on_alert)
        self.addCleanup(svc.close)
        return svc, rec

    def _scenario_chain(self) -> StaticChainAdapter:
        txs = _scenario_txs()
        return StaticChainAdapter(blocks=[_block(100, txs)], transactions=txs, head=100)

    def test_head_block_scenario(self) -> None:
        svc, rec = self._make_service(self._scenario_chain())

        self.assertTrue(svc.connect())
        self.assertTrue(svc.start())
        snap = rec.wait_for_block(100)
        rec.wait_until(lambda: len(rec.alerts) == 2)

        # feed is newest first; fetch order is the reverse
        fetch_order = list(reversed(snap.feed))
        self.assertEqual([t.hash for t in fetch_order], ["0xa", "0xb", "0xc"])
        self.assertEqual(
            [t.type for t in fetch_order],
            [TxType.TRANSFER, TxType.OTHER, TxType.CONTRACT_CREATION],
        )
        self.assertEqual([t.value for t in fetch_order], ["2.5", "0.0", "1.0"])
        self.assertEqual([t.sound_delay for t in fetch_order], [0, None, 600])
        self.assertEqual(snap.stats.total_transactions, 3)
        self.assertEqual(snap.connection_state, ConnectionState.CONNECTED)
        self.assertTrue(snap.is_listening)

        self.assertEqual([(a.tx_hash, a.delay_ms) for a in rec.alerts], [("0xa", 0), ("0xc", 600)])
        self.assertEqual(rec.alerts[0].amount, Decimal("2.5"))

    def test_subscription_blocks_are_merged_on_top(self) -> None:
        chain = self._scenario_chain()
        svc, rec = self._make_service(chain)
        svc.connect()
        svc.start()
        rec.wait_for_block(100)

        nxt = [_tx("0xd", value=10**18), _tx("0xa", value=5 * 10**18)]
        chain.add_block(_block(101, nxt), nxt)
        chain.emit_block(101)
        snap = rec.wait_for_block(101)

        self.assertEqual([t.hash for t in snap.feed], ["0xd", "0xc", "0xb", "0xa"])
        # duplicate keeps its first-seen value
        self.assertEqual(snap.feed[-1].value, "2.5")
        self.assertEqual(snap.stats.total_transactions, 5)
        self.assertEqual(len({t.hash for t in snap.feed}), len(snap.feed))

        # an empty block flushes everything emitted for block 101
        chain.add_block(_block(102, []))
        chain.emit_block(102)
        rec.wait_for_block(102)
        # the duplicate 0xa gets no second alert
        self.assertEqual([a.tx_hash for a in rec.alerts], ["0xa", "0xc", "0xd"])
        self.assertEqual(rec.alerts[-1].delay_ms, 0)

    def test_transaction_fetch_failures_are_dropped(self) -> None:
        good, bad = _tx("0x1", value=10**18), _tx("0x2", value=10**18)
        chain = StaticChainAdapter(
            blocks=[_block(5, [good, bad])],
            transactions=[good, bad],
            failing_txs={"0x2"},
        )
        svc, rec = self._make_service(chain)
        svc.connect()
        svc.start()
        snap = rec.wait_for_block(5)

        self.assertEqual([t.hash for t in snap.feed], ["0x1"])
        self.assertEqual(snap.stats.total_transactions, 2)
        self.assertIsNone(snap.last_error)

    def test_failed_block_is_skipped(self) -> None:
        first = [_tx("0x1")]
        chain = StaticChainAdapter(blocks=[_block(10, first)], transactions=first, failing_blocks={11})
        svc, rec = self._make_service(chain)
        svc.connect()
        svc.start()
        rec.wait_for_block(10)

        later = [_tx("0x3")]
        chain.add_block(_block(12, later), later)
        chain.emit_block(11)
        chain.emit_block(12)
        snap = rec.wait_for_block(12)

        self.assertEqual([t.hash for t in snap.feed], ["0x3", "0x1"])
        self.assertEqual(snap.stats.total_transactions, 2)

    def test_only_first_transactions_of_block_fetched(self) -> None:
        txs = [_tx(f"0x{i:02x}", value=10**18) for i in range(15)]
        chain = StaticChainAdapter(blocks=[_block(7, txs)], transactions=txs)
        svc, rec = self._make_service(chain)
        svc.connect()
        svc.start()
        snap = rec.wait_for_block(7)

        # fetched in parallel, so only the set of requests is stable
        self.assertCountEqual(chain.tx_requests, [t.tx_hash for t in txs[:10]])
        self.assertEqual([t.hash for t in reversed(snap.feed)], [t.tx_hash for t in txs[:10]])
        self.assertEqual(len(snap.feed), 10)
        self.assertEqual(snap.stats.total_transactions, 15)

    def test_feed_retention(self) -> None:
        txs = [_tx(f"0x{i:02x}", value=10**18) for i in range(6)]
        chain = StaticChainAdapter(blocks=[_block(3, txs)], transactions=txs)
        svc, rec = self._make_service(chain, feed_retention_size=4)
        svc.connect()
        svc.start()
        snap = rec.wait_for_block(3)

        self.assertEqual([t.hash for t in snap.feed], ["0x05", "0x04", "0x03", "0x02"])

    def test_stale_block_numbers_ignored(self) -> None:
        chain = self._scenario_chain()
        svc, rec = self._make_service(chain)
        svc.connect()
        svc.start()
        rec.wait_for_block(100)

        chain.emit_block(100)
        nxt = [_tx("0xe")]
        chain.add_block(_block(101, nxt), nxt)
        chain.emit_block(101)
        snap = rec.wait_for_block(101)

        self.assertEqual(snap.stats.total_transactions, 4)

    def test_connectivity_failure(self) -> None:
        svc, rec = self._make_service(StaticChainAdapter(unreachable=True))

        self.assertFalse(svc.connect())
        snap = svc.snapshot()
        self.assertEqual(snap.connection_state, ConnectionState.DISCONNECTED)
        self.assertIsInstance(snap.last_error, str)
        self.assertIn("Somnia Dream Testnet", snap.last_error)
        self.assertFalse(svc.start())
        self.assertFalse(svc.is_listening)
        self.assertEqual(
            [s.connection_state for s in rec.snapshots],
            [ConnectionState.CONNECTING, ConnectionState.DISCONNECTED],
        )

    def test_restart_resets_session_state(self) -> None:
        chain = self._scenario_chain()
        svc, rec = self._make_service(chain)
        svc.connect()
        svc.start()
        rec.wait_for_block(100)

        svc.stop()
        self.assertEqual(chain.subscriber_count, 0)
        self.assertFalse(svc.snapshot().is_listening)

        rec.clear()
        svc.start()
        self.assertEqual(rec.snapshots[0].stats.total_transactions, 0)
        self.assertEqual(rec.snapshots[0].feed, ())
        snap = rec.wait_for_block(100)
        self.assertEqual(snap.stats.total_transactions, 3)
        self.assertEqual(len(snap.feed), 3)

    def test_switch_network_tears_down_old_client(self) -> None:
        testnet = self._scenario_chain()
        main_txs = [_tx("0xf", value=10**18)]
        mainnet = StaticChainAdapter(blocks=[_block(900, main_txs)], transactions=main_txs)
        chains = {"Somnia Dream Testnet": testnet, "Somnia Mainnet": mainnet}

        svc = BlockListenerService(ListenerConfig(network="testnet"), chain_factory=lambda net: chains[net.name])
        svc.QUEUE_POLL_SEC = 0.05
        rec = _Recorder()
        svc.add_snapshot_listener(rec.on_snapshot)
        self.addCleanup(svc.close)

        svc.connect()
        svc.start()
        rec.wait_for_block(100)

        self.assertTrue(svc.switch_network("mainnet"))
        snap = rec.wait_for_block(900)

        self.assertTrue(testnet.closed)
        self.assertEqual(testnet.subscriber_count, 0)
        self.assertEqual(mainnet.subscriber_count, 1)
        self.assertEqual(snap.network, "mainnet")
        self.assertEqual([t.hash for t in snap.feed], ["0xf"])
        self.assertEqual(snap.stats.total_transactions, 1)
        self.assertEqual(svc.network.symbol, "SOMI")

    def test_in_flight_results_discarded_after_stop(self) -> None:
        entered = threading.Event()
        release = threading.Event()

        class _SlowChain(StaticChainAdapter):
            def get_transaction(self, tx_hash):
                entered.set()
                release.wait(5)
                return super().get_transaction(tx_hash)

        txs = [_tx("0x1", value=10**18)]
        chain = _SlowChain(blocks=[_block(50, txs)], transactions=txs)
        svc, rec = self._make_service(chain)
        svc.connect()
        svc.start()

        self.assertTrue(entered.wait(5))
        svc.stop()
        release.set()
        time.sleep(0.3)

        self.assertFalse(any(s.stats.current_block == 50 for s in rec.snapshots))
        self.assertEqual(svc.snapshot().feed, ())
        self.assertEqual(rec.alerts, [])

    def test_stop_during_fetch_logs_no_error(self) -> None:
        entered = threading.Event()
        release = threading.Event()

        class _SlowChain(StaticChainAdapter):
            def get_transaction(self, tx_hash):
                entered.set()
                release.wait(5)
                return super().get_transaction(tx_hash)

        txs = [_tx("0x1", value=10**18), _tx("0x2", value=10**18)]
        chain = _SlowChain(blocks=[_block(50, txs)], transactions=txs)
        svc, rec = self._make_service(chain, fetch_workers=1)
        svc.connect()
        svc.start()
        self.assertTrue(entered.wait(5))

        with self.assertNoLogs("blockfeed.services.block_listener", level="ERROR"):
            svc.stop()
            release.set()
            time.sleep(0.3)

        self.assertEqual(svc.snapshot().feed, ())

    def test_unexpected_head_error_keeps_consumer_running(self) -> None:
        class _FlakyHeadChain(StaticChainAdapter):
            calls = 0

            def get_block_number(self):
                self.calls += 1
                if self.calls == 2:
                    raise ValueError("invalid literal for int() with base 16: '0xzz'")
                return super().get_block_number()

        chain = _FlakyHeadChain(head=100)
        svc, rec = self._make_service(chain)
        self.assertTrue(svc.connect())
        self.assertTrue(svc.start())

        nxt = [_tx("0xd", value=10**18)]
        chain.add_block(_block(101, nxt), nxt)
        chain.emit_block(101)
        snap = rec.wait_for_block(101)

        self.assertTrue(svc.is_listening)
        self.assertEqual([t.hash for t in snap.feed], ["0xd"])

    def test_unexpected_transaction_error_drops_only_that_transaction(self) -> None:
        class _BrokenTxChain(StaticChainAdapter):
            def get_transaction(self, tx_hash):
                if tx_hash == "0x2":
                    raise AttributeError("'str' object has no attribute 'get'")
                return super().get_transaction(tx_hash)

        good, bad = _tx("0x1", value=10**18), _tx("0x2", value=10**18)
        chain = _BrokenTxChain(blocks=[_block(100, [good, bad])], transactions=[good, bad])
        svc, rec = self._make_service(chain)
        svc.connect()
        svc.start()
        snap = rec.wait_for_block(100)

        self.assertEqual([t.hash for t in snap.feed], ["0x1"])
        self.assertEqual(snap.stats.total_transactions, 2)
        self.assertTrue(svc.is_listening)


if __name__ == "__main__":
    unittest.main()
