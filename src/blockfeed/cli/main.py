from __future__ import annotations

import argparse
import datetime as dt
import logging
import sys
import threading
from decimal import Decimal, InvalidOperation
from typing import List, Set

from blockfeed.config import settings
from blockfeed.config.networks import NETWORKS, NetworkConfig, get_network
from blockfeed.core.enums import AlertLevel
from blockfeed.core.errors import ConfigError
from blockfeed.core.models import AlertEvent, EngineSnapshot, ListenerConfig
from blockfeed.services.block_listener import BlockListenerService
from blockfeed.services.classifier import is_address
from blockfeed.io.output_writer import (
    format_amount,
    format_stats,
    write_alert_json,
    write_snapshot_json,
    write_transactions,
)

from blockfeed.adapters.chain.jsonrpc_chain_adapter import JsonRpcChainAdapter


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="blockfeed", description="Live block feed with transfer alerts")
    p.add_argument("--network", choices=sorted(NETWORKS), default=settings.DEFAULT_NETWORK, help="Network to listen on")
    p.add_argument("--rpc-url", help="Override the network's JSON-RPC endpoint")
    p.add_argument("--token", default=settings.MONITORED_TOKEN_ADDRESS, help="Only show transfer() calls to this ERC-20 token")
    p.add_argument("--min-alert", type=str, default=str(settings.ALERT_MIN_AMOUNT), help="Minimum amount for an alert")
    p.add_argument("--no-min-alert", action="store_true", help="Also alert (quietly) on positive amounts below --min-alert")
    p.add_argument("--only-transfers", action="store_true", default=settings.ALERT_ONLY_TRANSFERS, help="Alert on transfers only")
    p.add_argument("--stagger-ms", type=int, default=settings.ALERT_STAGGER_MS, help="Delay between alerts of one block")
    p.add_argument("--retention", type=int, default=settings.FEED_RETENTION_SIZE, help="Max transactions kept in the feed")
    p.add_argument("--window", type=int, default=settings.ROLLING_WINDOW_SIZE, help="Blocks used for the tps average")
    p.add_argument("--max-txs", type=int, default=settings.MAX_TRANSACTIONS_PER_BLOCK, help="Transactions fetched per block")
    p.add_argument("--duration", type=float, default=0, help="Stop after this many seconds (0=run until Ctrl-C)")
    p.add_argument("--json", action="store_true", help="Print one JSON snapshot per block instead of text")
    p.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...)")
    return p


class _Reporter:
    """Prints snapshots and plays alerts after their delay."""

    def __init__(self, network: NetworkConfig, as_json: bool) -> None:
        self.network = network
        self.as_json = as_json
        self.printed: Set[str] = set()
        self.timers: List[threading.Timer] = []
        self._out_lock = threading.Lock()

    @staticmethod
    def _ts() -> str:
        return dt.datetime.now().strftime("%H:%M:%S")

    def on_snapshot(self, snapshot: EngineSnapshot) -> None:
        with self._out_lock:
            if self.as_json:
                write_snapshot_json(snapshot, sys.stdout, self.network)
                return
            if snapshot.last_error:
                print(f"[{self._ts()}] {snapshot.last_error}", file=sys.stderr)
            fresh = [t for t in snapshot.feed if t.hash not in self.printed]
            # only hashes still in the bounded feed can show up again
            self.printed = {t.hash for t in snapshot.feed}
            if not fresh:
                return
            # oldest first so the terminal reads top-down
            write_transactions(reversed(fresh), self.network, sys.stdout)
            print(f"[{self._ts()}] {format_stats(snapshot)}")

    def play(self, alert: AlertEvent) -> None:
        with self._out_lock:
            if self.as_json:
                write_alert_json(alert, sys.stdout)
                return
            cue = "\a" if alert.level == AlertLevel.STANDARD else ""
            print(f"{cue}♪ {format_amount(format(alert.amount, 'f'))} {self.network.symbol} ({alert.level.value})")

    def on_alert(self, alert: AlertEvent) -> None:
        timer = threading.Timer(alert.delay_ms / 1000, self.play, args=(alert,))
        timer.daemon = True
        with self._out_lock:
            self.timers = [t for t in self.timers if t.is_alive()]
            self.timers.append(timer)
        timer.start()

    def cancel_pending(self) -> None:
        with self._out_lock:
            timers, self.timers = self.timers, []
        for t in timers:
            t.cancel()


def main() -> int:
    args = build_arg_parser().parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        network = get_network(args.network)
        min_alert = Decimal(args.min_alert)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except InvalidOperation:
        print(f"Invalid --min-alert value: {args.min_alert!r}", file=sys.stderr)
        return 2

    if args.token and not is_address(args.token):
        print(f"Invalid --token address: {args.token!r}", file=sys.stderr)
        return 2

    if args.window < 1 or args.max_txs < 0 or args.stagger_ms < 0:
        print("--window must be >= 1; --max-txs and --stagger-ms must be >= 0", file=sys.stderr)
        return 2

    cfg = ListenerConfig(
        network=args.network,
        monitored_token_address=args.token,
        minimum_alert_amount=min_alert,
        enforce_minimum_alert=not args.no_min_alert,
        only_transfers=args.only_transfers,
        stagger_interval_ms=args.stagger_ms,
        feed_retention_size=args.retention,
        rolling_window_size=args.window,
        max_transactions_per_block=args.max_txs,
        block_queue_size=settings.BLOCK_QUEUE_SIZE,
        fetch_workers=settings.FETCH_WORKERS,
    )

    # Ports
    def chain_factory(net: NetworkConfig) -> JsonRpcChainAdapter:
        return JsonRpcChainAdapter(args.rpc_url or net.rpc_url)

    svc = BlockListenerService(cfg, chain_factory=chain_factory)
    reporter = _Reporter(network, args.json)

    print(f"Connecting to {network.name} ({args.rpc_url or network.rpc_url})...", file=sys.stderr)
    if not svc.connect():
        print(svc.snapshot().last_error or "Connection failed", file=sys.stderr)
        return 1

    svc.add_snapshot_listener(reporter.on_snapshot)
    svc.add_alert_listener(reporter.on_alert)
    if not svc.start():
        print(svc.snapshot().last_error or "Could not start listening", file=sys.stderr)
        svc.close()
        return 1

    done = threading.Event()
    try:
        done.wait(args.duration if args.duration > 0 else None)
    except KeyboardInterrupt:
        pass
    finally:
        svc.close()
        reporter.cancel_pending()

    stats = svc.snapshot().stats
    print(
        f"Stopped at block {stats.current_block} • {stats.total_transactions} txs seen",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
