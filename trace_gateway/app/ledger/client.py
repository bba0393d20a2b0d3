"""
ledger/client.py - Single point of contact with the Ethereum network.

Owns the web3 connection, the signing account and the ProductRegistry
contract handle. web3.py is synchronous, so every RPC runs in the default
executor; the request's event loop never blocks on the network.

Nothing is cached between calls: gas price and nonce are fetched fresh on
every submission. Several gateway instances sign with the same account and
share no memory, so the nonce is read from the node (pending count)
immediately before signing.
"""
import asyncio
import functools
import logging
from typing import Any, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from ..config import RECEIPT_TIMEOUT_SECONDS
from .abi import CONTRACT_ABI
from .outcome import Success

log = logging.getLogger("trace.chain")


class EstimationFailed(Exception):
    """The node could not simulate the call (revert, bad args, RPC error)."""


class TransactionReverted(Exception):
    """The transaction was mined with status 0."""


class ChainClient:
    def __init__(self, w3: Web3, account, contract):
        self._w3 = w3
        self._account = account
        self._contract = contract

    @classmethod
    def connect(cls, rpc_url: str, private_key: str, contract_address: str,
                abi: Optional[list] = None) -> "ChainClient":
        """Build provider, account and contract. Makes no network call."""
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        key = private_key if private_key.startswith("0x") else "0x" + private_key
        account = w3.eth.account.from_key(key)
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=abi or CONTRACT_ABI,
        )
        return cls(w3, account, contract)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def contract_address(self) -> str:
        return self._contract.address

    async def _io(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def _function(self, function_name: str, args):
        return getattr(self._contract.functions, function_name)(*args)

    #  Reads

    async def network_id(self) -> int:
        return await self._io(lambda: self._w3.eth.chain_id)

    async def current_gas_price(self) -> int:
        return await self._io(lambda: self._w3.eth.gas_price)

    async def account_balance(self) -> int:
        return await self._io(self._w3.eth.get_balance, self._account.address)

    async def latest_block(self) -> int:
        return await self._io(lambda: self._w3.eth.block_number)

    async def call(self, function_name: str, args) -> Any:
        return await self._io(self._function(function_name, args).call)

    def from_wei(self, value: int, unit: str = "ether"):
        return self._w3.from_wei(value, unit)

    #  Writes

    async def estimate_gas(self, function_name: str, args, from_address: str) -> int:
        fn = self._function(function_name, args)
        try:
            return await self._io(fn.estimate_gas, {"from": from_address})
        except (ContractLogicError, Web3Exception, ValueError) as exc:
            raise EstimationFailed(str(exc)) from exc

    async def submit(self, function_name: str, args, gas_limit: int, gas_price: int) -> Success:
        """Sign, broadcast and wait for inclusion. Raises on any failure."""
        return await self._io(self._submit_blocking, function_name, args, gas_limit, gas_price)

    def _submit_blocking(self, function_name, args, gas_limit, gas_price) -> Success:
        fn = self._function(function_name, args)
        nonce = self._w3.eth.get_transaction_count(self._account.address, "pending")
        tx = fn.build_transaction({
            "from": self._account.address,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
        })
        log.info("sending %s gas=%d gasPrice=%s gwei nonce=%d",
                 function_name, gas_limit, self._w3.from_wei(gas_price, "gwei"), nonce)

        signed = self._account.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self._w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS
        )
        hex_hash = Web3.to_hex(tx_hash)

        if int(receipt["status"]) != 1:
            log.warning("%s reverted tx=%s gasUsed=%s gasLimit=%d",
                        function_name, hex_hash, receipt.get("gasUsed"), gas_limit)
            raise TransactionReverted(f"execution reverted: tx {hex_hash}")

        log.info("%s mined tx=%s block=%s gasUsed=%s",
                 function_name, hex_hash, receipt.get("blockNumber"), receipt.get("gasUsed"))
        return Success(tx_hash=hex_hash)

    #  Logs

    async def registration_logs(self, from_block: int, to_block: int) -> list[dict]:
        event = self._contract.events.ProductRegistered()
        entries = await self._io(event.get_logs, from_block=from_block, to_block=to_block)
        return [
            {
                "productId": e["args"]["productId"],
                "txHash": Web3.to_hex(e["transactionHash"]),
                "blockNumber": e["blockNumber"],
            }
            for e in entries
        ]
