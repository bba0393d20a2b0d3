"""
Registration sweep: products left failed or pending by a lost response are
healed from ProductRegistered logs.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from trace_gateway.app import records
from trace_gateway.app.backstop import RegistrationSweeper


async def _stored(store, product_id, status, tx_hash=None):
    await records.put_product(store, {
        "productId": product_id, "name": "Widget", "category": "Tools", "batch": "B1",
        "manufacturerId": "maker-1", "blockchainStatus": status, "blockchainTxHash": tx_hash,
    })


@pytest.mark.asyncio
async def test_failed_product_is_healed(ctx, chain_client):
    await _stored(ctx.store, "p-failed", "failed")
    await _stored(ctx.store, "p-pending", "pending")
    chain_client.logs = [
        {"productId": "p-failed", "txHash": "0xlost", "blockNumber": 90},
        {"productId": "p-pending", "txHash": "0xslow", "blockNumber": 95},
    ]

    healed = await RegistrationSweeper(ctx, lookback_blocks=50).sweep()

    assert healed == 2
    failed = await records.find_product(ctx.store, "p-failed")
    assert failed["blockchainStatus"] == "registered"
    assert failed["blockchainTxHash"] == "0xlost"
    assert (await records.find_product(ctx.store, "p-pending"))["blockchainTxHash"] == "0xslow"


@pytest.mark.asyncio
async def test_registered_and_unsubmitted_are_left_alone(ctx, chain_client):
    await _stored(ctx.store, "p-ok", "registered", "0xoriginal")
    await _stored(ctx.store, "p-never", "not_registered")
    chain_client.logs = [
        {"productId": "p-ok", "txHash": "0xother", "blockNumber": 90},
        {"productId": "p-never", "txHash": "0xodd", "blockNumber": 91},
        {"productId": "p-unknown", "txHash": "0xghost", "blockNumber": 92},
    ]

    assert await RegistrationSweeper(ctx, lookback_blocks=50).sweep() == 0
    assert (await records.find_product(ctx.store, "p-ok"))["blockchainTxHash"] == "0xoriginal"
    assert (await records.find_product(ctx.store, "p-never"))["blockchainStatus"] == "not_registered"


@pytest.mark.asyncio
async def test_sweep_resumes_after_last_block(ctx, chain_client):
    await _stored(ctx.store, "p-old", "failed")
    chain_client.logs = [{"productId": "p-old", "txHash": "0xold", "blockNumber": 10}]
    sweeper = RegistrationSweeper(ctx, lookback_blocks=50)

    assert await sweeper.sweep() == 0  # block 10 is outside the lookback window
    assert sweeper.last_block == 100

    await _stored(ctx.store, "p-new", "failed")
    chain_client.logs.append({"productId": "p-new", "txHash": "0xnew", "blockNumber": 101})
    chain_client.block_number = 105

    assert await sweeper.sweep() == 1
    assert sweeper.last_block == 105
    assert await sweeper.sweep() == 0


@pytest.mark.asyncio
async def test_degraded_sweep_is_noop(degraded_ctx):
    await _stored(degraded_ctx.store, "p", "failed")
    assert await RegistrationSweeper(degraded_ctx).sweep() == 0
