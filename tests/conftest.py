"""
Shared fixtures: a scriptable stand-in for the chain client and service
contexts built on the in-memory store.

Run with: pytest tests/
"""
import asyncio
import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from trace_gateway.app.bootstrap import ChainContext, ServiceContext
from trace_gateway.app.config import MissingSecretsError
from trace_gateway.app.ledger.outcome import Success
from trace_gateway.app.metrics import collector
from trace_gateway.app.store.memory import MemoryStore

SECRETS = {
    "INFURA_API_KEY": "test-key",
    "PRIVATE_KEY": "0x" + "ab" * 32,
    "CONTRACT_ADDRESS": "0x" + "22" * 20,
}


class FakeChainClient:
    """Records every call. Set submit_error / estimate_error to script failures."""

    address = "0x" + "11" * 20
    contract_address = "0x" + "22" * 20

    def __init__(self):
        self.gas_price = 10_000_000_000
        self.gas_estimate = 100_000
        self.estimate_error = None
        self.submit_error = None
        self.submit_delay = 0.0
        self.next_tx_hash = None
        self.balance_wei = 10 ** 18
        self.block_number = 100
        self.chain_products: dict[str, tuple] = {}
        self.logs: list[dict] = []

        self.submit_calls: list[dict] = []
        self.estimate_calls: list[tuple] = []
        self.network_calls = 0

    async def network_id(self) -> int:
        self.network_calls += 1
        return 11155111

    async def current_gas_price(self) -> int:
        self.network_calls += 1
        return self.gas_price

    async def account_balance(self) -> int:
        return self.balance_wei

    def from_wei(self, value, unit="ether"):
        return Decimal(value) / Decimal(10 ** 18)

    async def latest_block(self) -> int:
        return self.block_number

    async def call(self, function_name, args):
        self.network_calls += 1
        return self.chain_products.get(args[0], ("", "", "", "", 0))

    async def estimate_gas(self, function_name, args, from_address):
        self.estimate_calls.append((function_name, tuple(args)))
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.gas_estimate

    async def submit(self, function_name, args, gas_limit, gas_price):
        self.submit_calls.append({
            "function": function_name, "args": tuple(args),
            "gas_limit": gas_limit, "gas_price": gas_price,
        })
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.submit_error is not None:
            raise self.submit_error

        tx_hash = self.next_tx_hash or "0x%064x" % len(self.submit_calls)
        if function_name == "registerProduct":
            product_id, name, batch, manufacturer = args
            self.chain_products[product_id] = (name, batch, manufacturer, "Created", 1_700_000_000)
        elif function_name == "updateProductStatus" and args[0] in self.chain_products:
            product_id, status = args
            name, batch, manufacturer, _, ts = self.chain_products[product_id]
            self.chain_products[product_id] = (name, batch, manufacturer, status, ts)
        return Success(tx_hash=tx_hash)

    async def registration_logs(self, from_block, to_block):
        return [e for e in self.logs if from_block <= e["blockNumber"] <= to_block]


@pytest.fixture(autouse=True)
def reset_metrics():
    collector.reset()
    yield
    collector.reset()


@pytest.fixture
def chain_client():
    return FakeChainClient()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ctx(chain_client, store):
    chain = ChainContext(secrets_loader=lambda: dict(SECRETS),
                         connector=lambda *args: chain_client)
    return ServiceContext(chain=chain, store=store)


@pytest.fixture
def degraded_ctx(store):
    def missing():
        raise MissingSecretsError("Missing required blockchain configuration: ['PRIVATE_KEY']")

    def never_connect(*args):
        raise AssertionError("connector must not be called without secrets")

    chain = ChainContext(secrets_loader=missing, connector=never_connect)
    return ServiceContext(chain=chain, store=store)


MANUFACTURER = {"userId": "maker-1", "username": "acme", "name": "Acme Foods", "role": "manufacturer"}
RETAILER = {"userId": "shop-1", "username": "corner", "name": "Corner Shop", "role": "retailer"}
