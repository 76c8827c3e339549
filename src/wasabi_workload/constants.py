from typing import Final
from enum import StrEnum

from wasabi_workload.errors import UnsupportedWorkloadKind

genesis_account: Final = {
    "address": "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh",
    "seed": "snoPBrXtMeMyMHUVTgbuqAfg1SUTb",
}

GENESIS = genesis_account

NATIVE_ASSET: Final = 0


class WorkloadKind(StrEnum):
    PAYMENT = "payment"
    UNISWAP_SWAP = "uniswap"
    ELEMENT_VAULT = "element"

    @classmethod
    def parse(cls, value: "str | WorkloadKind") -> "WorkloadKind":
        """Accept the CLI value ("uniswap") or the long name ("uniswapSwap", "UNISWAP_SWAP")."""
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        for kind in cls:
            if key == kind.value or key.upper() == kind.name or key.replace("_", "").lower() == kind.name.replace("_", "").lower():
                return kind
        raise UnsupportedWorkloadKind(value)


class FundingState(StrEnum):
    POLLING    = "POLLING"
    ATTEMPTING = "ATTEMPTING"
    BACKOFF    = "BACKOFF"
    SATISFIED  = "SATISFIED"


HORIZON = 15  # Transactions expire if not validated within 15 ledgers (~45-60 seconds)
RPC_TIMEOUT = 2.0
RECEIPT_TIMEOUT = 90.0
MAX_FEE_DROPS = 1000
EXPIRED = "EXPIRED"

# Drops budgeted for the payment that funds one agent: the most we ever pay in fees.
BASE_TRANSFER_COST: Final = MAX_FEE_DROPS

BUFFER_PERCENT_PER_LOOP: Final = 5
DEFAULT_BUFFER_LOOPS: Final = 10  # used for the buffer when the run is unbounded

FUNDING_BACKOFF: Final = 5.0
REFUND_RESERVE: Final = 5 * BASE_TRANSFER_COST  # kept back at shutdown, on top of the account reserve

__all__ = [
    "BASE_TRANSFER_COST",
    "BUFFER_PERCENT_PER_LOOP",
    "DEFAULT_BUFFER_LOOPS",
    "EXPIRED",
    "FUNDING_BACKOFF",
    "GENESIS",
    "HORIZON",
    "MAX_FEE_DROPS",
    "NATIVE_ASSET",
    "RECEIPT_TIMEOUT",
    "REFUND_RESERVE",
    "RPC_TIMEOUT",

    ######
    "FundingState",
    "WorkloadKind",
]
