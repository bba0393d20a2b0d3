"""
ledger/errors.py - Map node / transport errors onto FailureKind.

web3 and the RPC provider report most failures as free-text messages, so
classification is an ordered list of (predicate, kind) pairs. The first
match wins; anything unmatched becomes UNKNOWN with the raw message.

Order matters: "replacement transaction underpriced" must be tested before
the bare "gas"/"nonce" checks, and "insufficient funds for gas * price"
before "gas".
"""
import asyncio
import logging
from typing import Callable

import requests
from web3.exceptions import TimeExhausted

from .outcome import Failure, FailureKind

log = logging.getLogger("trace.errors")

Predicate = Callable[[BaseException, str], bool]

_TIMEOUT_TYPES = (TimeExhausted, asyncio.TimeoutError, TimeoutError, requests.exceptions.Timeout)

MESSAGES = {
    FailureKind.UNDERPRICED:        "Transaction gas price too low, please retry",
    FailureKind.INSUFFICIENT_FUNDS: "Insufficient funds for blockchain transaction",
    FailureKind.NONCE_CONFLICT:     "Transaction nonce error, please retry",
    FailureKind.CONTRACT_REJECTED:  ("Transaction rejected by contract "
                                     "(product may already exist or caller unauthorized)"),
    FailureKind.CONGESTED:          "Network congested or gas estimation failed",
}


def contains(needle: str) -> Predicate:
    return lambda exc, msg: needle in msg


def is_timeout(exc: BaseException, msg: str) -> bool:
    return isinstance(exc, _TIMEOUT_TYPES)


CLASSIFIERS: list[tuple[Predicate, FailureKind]] = [
    (contains("replacement transaction underpriced"), FailureKind.UNDERPRICED),
    (contains("insufficient funds"),                  FailureKind.INSUFFICIENT_FUNDS),
    (contains("nonce"),                               FailureKind.NONCE_CONFLICT),
    (contains("revert"),                              FailureKind.CONTRACT_REJECTED),
    (contains("gas"),                                 FailureKind.CONGESTED),
    (is_timeout,                                      FailureKind.CONGESTED),
]


def error_text(exc: BaseException) -> str:
    text = str(exc)
    if not text and exc.args:
        text = repr(exc.args[0])
    return text or exc.__class__.__name__


def classify(exc: BaseException) -> Failure:
    raw = error_text(exc)
    msg = raw.lower()
    for predicate, kind in CLASSIFIERS:
        if predicate(exc, msg):
            return Failure(kind=kind, message=MESSAGES[kind], detail=raw)
    return Failure(kind=FailureKind.UNKNOWN, message=raw, detail=raw)
