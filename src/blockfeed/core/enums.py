from __future__ import annotations

from enum import Enum


class TxType(str, Enum):
    TRANSFER = "transfer"
    CONTRACT_CREATION = "contract-creation"
    OTHER = "other"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class AlertLevel(str, Enum):
    STANDARD = "standard"
    TINY = "tiny"      # positive amount below the minimum, only when no minimum filter is active
