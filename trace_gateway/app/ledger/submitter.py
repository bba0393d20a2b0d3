"""
ledger/submitter.py - Turn one business intent into a TransactionOutcome.

Policy per call:
  1. Coerce every argument to a trimmed string; an empty one fails fast
     (InvalidArgument) without touching the network.
  2. gasPrice = floor(network price * 1.2)
  3. estimate gas; on any estimation error use the operation's default
  4. gas limit = floor(estimate-or-default * 1.2)
  5. submit once (nonce read by the client right before signing)
  6. classify any error into a Failure

There is no retry here. A blind retry can double-submit: the first
transaction may already be in the mempool when its response is lost.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from ..config import GAS_LIMIT_MULTIPLIER, GAS_PRICE_MULTIPLIER
from ..metrics import SubmissionMetric, collector
from .client import ChainClient
from .errors import classify
from .operations import ContractOperation
from .outcome import Failure, FailureKind, TransactionOutcome

log = logging.getLogger("trace.submitter")


@dataclass(frozen=True)
class TransactionRequest:
    operation: ContractOperation
    args: tuple
    from_address: str


def inflate(value: int, factor: Decimal) -> int:
    """floor(value * factor), exact for wei-sized integers."""
    return int(Decimal(int(value)) * factor)


def coerce_args(operation: ContractOperation, args) -> tuple:
    """Trim and stringify; raise ValueError naming the first empty parameter."""
    if len(args) != len(operation.params):
        raise ValueError(f"{operation.function_name} expects {len(operation.params)} "
                         f"arguments, got {len(args)}")
    coerced = tuple("" if a is None else str(a).strip() for a in args)
    for name, value in zip(operation.params, coerced):
        if not value:
            raise ValueError(f"{name} is required for {operation.function_name}")
    return coerced


class TransactionSubmitter:
    def __init__(self, client: ChainClient):
        self._client = client

    def build_request(self, operation: ContractOperation, args) -> TransactionRequest:
        return TransactionRequest(operation, coerce_args(operation, args), self._client.address)

    async def submit(self, operation: ContractOperation, *args) -> TransactionOutcome:
        try:
            request = self.build_request(operation, args)
        except ValueError as exc:
            log.warning("rejected %s before submission: %s", operation.function_name, exc)
            return Failure(kind=FailureKind.INVALID_ARGUMENT, message=str(exc))

        t0 = time.monotonic()
        outcome = await self._attempt(request)
        latency_ms = (time.monotonic() - t0) * 1000

        collector.record(SubmissionMetric(
            ts=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            operation=operation.key,
            product_id=request.args[0],
            latency_ms=round(latency_ms, 2),
            success=outcome.ok,
            failure_kind=None if outcome.ok else outcome.kind.value,
        ))
        return outcome

    async def _attempt(self, request: TransactionRequest) -> TransactionOutcome:
        op = request.operation
        try:
            base_price = await self._client.current_gas_price()
            gas_price = inflate(base_price, GAS_PRICE_MULTIPLIER)

            try:
                estimate = await self._client.estimate_gas(
                    op.function_name, request.args, request.from_address
                )
            except Exception as exc:  # any estimation error falls back
                log.warning("gas estimation failed for %s, using default %d: %s",
                            op.function_name, op.default_gas, exc)
                estimate = op.default_gas
            gas_limit = inflate(estimate, GAS_LIMIT_MULTIPLIER)

            log.info("submitting %s product=%s gasLimit=%d basePrice=%d gasPrice=%d",
                     op.function_name, request.args[0], gas_limit, base_price, gas_price)
            return await self._client.submit(op.function_name, request.args,
                                             gas_limit, gas_price)

        except Exception as exc:
            failure = classify(exc)
            log.error("%s failed kind=%s: %s", op.function_name, failure.kind.value, failure.detail)
            return failure
