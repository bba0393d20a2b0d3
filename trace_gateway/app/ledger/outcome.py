"""
ledger/outcome.py - What a contract call attempt produced.

The submitter never raises; it returns Success or Failure. Callers decide
what a Failure means for their operation (see reconcile.py).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class FailureKind(str, Enum):
    UNDERPRICED        = "Underpriced"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    NONCE_CONFLICT     = "NonceConflict"
    CONTRACT_REJECTED  = "ContractRejected"
    CONGESTED          = "Congested"
    INVALID_ARGUMENT   = "InvalidArgument"
    UNAVAILABLE        = "Unavailable"
    UNKNOWN            = "Unknown"


@dataclass(frozen=True)
class Success:
    tx_hash: str

    ok = True


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str                  # caller-visible
    detail: Optional[str] = None  # raw upstream error text

    ok = False

    def as_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


TransactionOutcome = Union[Success, Failure]
