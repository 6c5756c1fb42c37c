from decimal import Decimal
import os
from dotenv import load_dotenv
load_dotenv()
# ---- JSON-RPC ----
RPC_TIMEOUT_SEC = float(os.environ.get("BLOCKFEED_RPC_TIMEOUT_SEC", "10"))
RPC_MAX_RETRIES = int(os.environ.get("BLOCKFEED_RPC_MAX_RETRIES", "2"))
RPC_REQUESTS_PER_SEC = float(os.environ.get("BLOCKFEED_RPC_REQUESTS_PER_SEC", "20"))
RPC_POLL_INTERVAL_SEC = float(os.environ.get("BLOCKFEED_POLL_INTERVAL_SEC", "1.0"))

# ---- Listener ----
DEFAULT_NETWORK = os.environ.get("BLOCKFEED_NETWORK", "testnet")

# Monitor a single ERC-20 token instead of native transfers. Empty = native.
MONITORED_TOKEN_ADDRESS = os.environ.get("BLOCKFEED_TOKEN_ADDRESS") or None

MAX_TRANSACTIONS_PER_BLOCK = int(os.environ.get("BLOCKFEED_MAX_TXS_PER_BLOCK", "10"))
ROLLING_WINDOW_SIZE = int(os.environ.get("BLOCKFEED_ROLLING_WINDOW_SIZE", "10"))
FEED_RETENTION_SIZE = int(os.environ.get("BLOCKFEED_FEED_RETENTION_SIZE", "200"))
BLOCK_QUEUE_SIZE = int(os.environ.get("BLOCKFEED_BLOCK_QUEUE_SIZE", "32"))
FETCH_WORKERS = int(os.environ.get("BLOCKFEED_FETCH_WORKERS", "4"))

# ----- Alerts ------
ALERT_MIN_AMOUNT = Decimal(os.environ.get("BLOCKFEED_ALERT_MIN_AMOUNT", "0.0005"))
ALERT_STAGGER_MS = int(os.environ.get("BLOCKFEED_ALERT_STAGGER_MS", "600"))
ALERT_ONLY_TRANSFERS = os.environ.get("BLOCKFEED_ALERT_ONLY_TRANSFERS", "0").lower() in ("1", "true", "yes")

# ---- Network endpoints ----
TESTNET_RPC_URL = os.environ.get("BLOCKFEED_TESTNET_RPC_URL", "https://dream-rpc.somnia.network")
MAINNET_RPC_URL = os.environ.get("BLOCKFEED_MAINNET_RPC_URL", "https://api.infra.mainnet.somnia.network/")
