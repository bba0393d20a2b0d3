"""
errors.py - Application errors and their HTTP status codes.

Chain failures on creation and order paths never become one of these;
they are folded into the stored blockchainStatus instead.
"""
from typing import Optional

from .ledger.outcome import Failure


class TraceGatewayError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationError(TraceGatewayError):
    status_code = 400


class InventoryError(TraceGatewayError):
    status_code = 400


class NotFoundOrForbidden(TraceGatewayError):
    """A conditional store write found no record to act on."""
    status_code = 400

    def __init__(self, message: str = "Item does not exist or you do not have permission"):
        super().__init__(message)


class NotFoundError(TraceGatewayError):
    status_code = 404


class ChainUpdateError(TraceGatewayError):
    """A status update could not be confirmed on chain; the store was not touched."""
    status_code = 502

    def __init__(self, message: str, failure: Optional[Failure] = None):
        super().__init__(message)
        self.failure = failure

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.failure is not None:
            body["blockchainError"] = self.failure.as_dict()
        return body
