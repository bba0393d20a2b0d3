"""
backstop.py - Periodic repair of products whose registration was lost.

A registerProduct transaction can be mined even though the gateway saw a
failure (receipt timeout, dropped connection). The product is then stored
as "failed" although it exists on chain. Every RECONCILE_INTERVAL_SECONDS:

  1. Read ProductRegistered logs from the last scanned block to latest
  2. For each productId, look the product up in the store
  3. If its blockchainStatus is failed or pending, set it to registered
     with the hash of the mined transaction
  4. Remember the latest block for the next sweep

Products tagged not_registered were never submitted and are left alone;
so are records already registered. Disabled when the interval is 0.
"""
import asyncio
import logging
from typing import Optional

from . import records
from .bootstrap import ServiceContext
from .config import RECONCILE_INTERVAL_SECONDS, RECONCILE_LOOKBACK_BLOCKS
from .reconcile import ChainStatus

log = logging.getLogger("trace.backstop")

HEALABLE = {ChainStatus.FAILED.value, ChainStatus.PENDING.value}


class RegistrationSweeper:
    def __init__(self, ctx: ServiceContext, lookback_blocks: int = RECONCILE_LOOKBACK_BLOCKS):
        self._ctx = ctx
        self._lookback = lookback_blocks
        self.last_block: Optional[int] = None

    async def sweep(self) -> int:
        """Run one pass; returns the number of records repaired."""
        state = await self._ctx.chain.ensure_ready()
        if not state.ready:
            return 0

        latest = await state.client.latest_block()
        start = max(0, latest - self._lookback) if self.last_block is None else self.last_block + 1
        if start > latest:
            return 0

        entries = await state.client.registration_logs(start, latest)
        healed = 0
        for entry in entries:
            if await self._heal(entry):
                healed += 1

        self.last_block = latest
        if healed:
            log.info("registration sweep blocks %d-%d healed %d product(s)", start, latest, healed)
        return healed

    async def _heal(self, entry: dict) -> bool:
        product = await records.find_product(self._ctx.store, entry["productId"])
        if not product or product.get("blockchainStatus") not in HEALABLE:
            return False
        await records.set_product_fields(self._ctx.store, product["manufacturerId"],
                                         product["productId"], {
            "blockchainStatus": ChainStatus.REGISTERED.value,
            "blockchainTxHash": entry["txHash"],
            "updatedAt": records.utc_now(),
        })
        log.warning("product %s was %s in store but registered on chain tx=%s",
                    product["productId"], product.get("blockchainStatus"), entry["txHash"])
        return True


async def reconcile_worker(ctx: ServiceContext, interval: int = RECONCILE_INTERVAL_SECONDS):
    """Main sweep loop. Runs forever."""
    sweeper = RegistrationSweeper(ctx)
    log.info("registration sweeper started: interval=%ds", interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await sweeper.sweep()
        except Exception as exc:
            log.error("registration sweep error: %s", exc)
