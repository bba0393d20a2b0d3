"""
Chain-then-store behaviour of the business operations.

The store under test is the in-memory backend; the chain is FakeChainClient.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
import requests
from web3.exceptions import TimeExhausted

from conftest import MANUFACTURER, RETAILER
from trace_gateway.app import reconcile, records
from trace_gateway.app.errors import (
    ChainUpdateError, InventoryError, NotFoundError, NotFoundOrForbidden, ValidationError,
)
from trace_gateway.app.ledger.operations import REGISTER_PRODUCT
from trace_gateway.app.ledger.outcome import FailureKind
from trace_gateway.app.reconcile import ChainStatus

WIDGET = {"name": "Widget", "category": "Tools", "batch": "B1", "quantity": 10, "price": 5}


async def _create(ctx, data=WIDGET):
    result = await reconcile.create_product(ctx, MANUFACTURER["userId"], MANUFACTURER, dict(data))
    return result, await records.find_product(ctx.store, result["product"]["productId"])


#  Product creation

@pytest.mark.asyncio
async def test_registered_product_mirrors_tx_hash(ctx, chain_client):
    chain_client.next_tx_hash = "0xabc"

    result, stored = await _create(ctx)

    assert stored["blockchainStatus"] == "registered"
    assert stored["blockchainTxHash"] == "0xabc"
    assert "blockchain" in result["message"]
    assert "blockchainError" not in result
    call = chain_client.submit_calls[0]
    assert call["function"] == "registerProduct"
    assert call["args"] == (stored["productId"], "Widget", "B1", "Acme Foods")


@pytest.mark.asyncio
@pytest.mark.parametrize("error, kind", [
    (ValueError("insufficient funds for gas * price + value"), FailureKind.INSUFFICIENT_FUNDS),
    (ValueError("execution reverted: Product already exists"), FailureKind.CONTRACT_REJECTED),
    (TimeExhausted("not in the chain after 120 seconds"), FailureKind.CONGESTED),
])
async def test_chain_failure_still_creates_product(ctx, chain_client, error, kind):
    chain_client.submit_error = error

    result, stored = await _create(ctx)

    assert stored["blockchainStatus"] == "failed"
    assert stored["blockchainTxHash"] is None
    assert result["blockchainError"]["kind"] == kind.value
    assert len(chain_client.submit_calls) == 1


@pytest.mark.asyncio
async def test_degraded_creation_makes_no_network_call(degraded_ctx):
    result, stored = await _create(degraded_ctx)

    assert stored["blockchainStatus"] == "not_registered"
    assert stored["blockchainTxHash"] is None
    assert "not_registered" in result["message"]


@pytest.mark.asyncio
async def test_creation_seeds_manufacturer_inventory(ctx):
    _, stored = await _create(ctx)
    assert await records.get_inventory(ctx.store, MANUFACTURER["userId"], stored["productId"]) == 10


@pytest.mark.asyncio
async def test_creation_requires_name_category_batch(ctx, chain_client):
    with pytest.raises(ValidationError):
        await _create(ctx, {"name": "Widget", "category": "", "batch": "B1"})
    assert chain_client.submit_calls == []


@pytest.mark.asyncio
async def test_reconcile_write_result(ctx, chain_client):
    chain_client.next_tx_hash = "0xfeed"
    result = await reconcile.reconcile_write(ctx, REGISTER_PRODUCT, ("p9", "W", "B", "M"))
    assert result.store_status is ChainStatus.REGISTERED
    assert result.as_dict() == {"storeStatus": "registered", "txHash": "0xfeed", "error": None}


@pytest.mark.asyncio
async def test_submit_chain_transaction_when_degraded(degraded_ctx):
    outcome = await reconcile.submit_chain_transaction(degraded_ctx, REGISTER_PRODUCT, ("p", "W", "B", "M"))
    assert outcome.kind is FailureKind.UNAVAILABLE


#  Status updates

@pytest.mark.asyncio
async def test_status_update_failure_leaves_store_untouched(ctx, chain_client):
    _, stored = await _create(ctx)
    chain_client.submit_error = ValueError("insufficient funds for gas * price + value")

    with pytest.raises(ChainUpdateError) as err:
        await reconcile.update_product_status(ctx, MANUFACTURER["userId"], stored["productId"],
                                              {"status": "Shipped"})

    assert "insufficient funds" in err.value.message.lower()
    assert err.value.to_dict()["blockchainError"]["kind"] == "InsufficientFunds"
    after = await records.find_product(ctx.store, stored["productId"])
    assert after == stored


@pytest.mark.asyncio
async def test_status_update_success_keeps_registration_hash(ctx, chain_client):
    chain_client.next_tx_hash = "0xreg"
    _, stored = await _create(ctx)
    chain_client.next_tx_hash = "0xstatus"

    result = await reconcile.update_product_status(ctx, MANUFACTURER["userId"], stored["productId"],
                                                   {"status": "Shipped"})

    after = await records.find_product(ctx.store, stored["productId"])
    assert result["blockchainTxHash"] == "0xstatus"
    assert after["currentStatus"] == "Shipped"
    assert after["lastBlockchainTxHash"] == "0xstatus"
    assert after["blockchainStatus"] == "registered"
    assert after["blockchainTxHash"] == "0xreg"


@pytest.mark.asyncio
async def test_status_update_degraded_raises(degraded_ctx):
    _, stored = await _create(degraded_ctx)
    with pytest.raises(ChainUpdateError, match="Blockchain not initialized"):
        await reconcile.update_product_status(degraded_ctx, MANUFACTURER["userId"],
                                              stored["productId"], {"status": "Shipped"})


@pytest.mark.asyncio
async def test_status_update_on_foreign_product_never_reaches_chain(ctx, chain_client):
    _, stored = await _create(ctx)

    with pytest.raises(NotFoundOrForbidden):
        await reconcile.update_product_status(ctx, "maker-2", stored["productId"],
                                              {"status": "Recalled"})
    with pytest.raises(NotFoundOrForbidden):
        await reconcile.update_product_status(ctx, MANUFACTURER["userId"], "missing",
                                              {"status": "Recalled"})

    assert [c["function"] for c in chain_client.submit_calls] == ["registerProduct"]
    assert (await records.find_product(ctx.store, stored["productId"])).get("currentStatus") is None


#  Orders

async def _export_order(ctx, quantity=3):
    _, stored = await _create(ctx)
    created = await reconcile.create_order(ctx, MANUFACTURER["userId"], MANUFACTURER, {
        "type": "export", "productId": stored["productId"], "quantity": quantity,
        "recipientId": RETAILER["userId"], "recipientName": RETAILER["name"],
    })
    return stored, created["order"]


@pytest.mark.asyncio
async def test_completed_export_survives_transport_timeout(ctx, chain_client):
    stored, order = await _export_order(ctx)
    chain_client.submit_error = requests.exceptions.ReadTimeout("read timed out")

    result = await reconcile.update_order_status(ctx, MANUFACTURER["userId"], order["orderId"],
                                                 {"status": "completed"})

    saved = await records.get_order(ctx.store, MANUFACTURER["userId"], order["orderId"])
    traces = await records.list_trace_records(ctx.store, stored["productId"])
    assert saved["status"] == "completed"
    assert saved["completedAt"]
    assert result["traceRecordAdded"] is True
    assert result["blockchainTxHash"] is None
    assert len(traces) == 1
    assert traces[0]["stage"] == "Exported"
    assert traces[0]["blockchainTxHash"] is None
    assert await records.get_inventory(ctx.store, MANUFACTURER["userId"], stored["productId"]) == 7


@pytest.mark.asyncio
async def test_completed_export_with_chain_records_tx(ctx, chain_client):
    stored, order = await _export_order(ctx)
    chain_client.next_tx_hash = "0xtrace"

    result = await reconcile.update_order_status(ctx, MANUFACTURER["userId"], order["orderId"],
                                                 {"status": "completed"})

    assert result["blockchainTxHash"] == "0xtrace"
    assert chain_client.submit_calls[-1]["function"] == "addTraceRecord"
    assert chain_client.submit_calls[-1]["args"] == (stored["productId"], "Exported", "Acme Foods", "Vietnam")


@pytest.mark.asyncio
async def test_completion_with_short_inventory_still_completes(ctx, chain_client):
    stored, order = await _export_order(ctx, quantity=50)

    result = await reconcile.update_order_status(ctx, MANUFACTURER["userId"], order["orderId"],
                                                 {"status": "completed"})

    saved = await records.get_order(ctx.store, MANUFACTURER["userId"], order["orderId"])
    assert saved["status"] == "completed"
    assert result["traceRecordAdded"] is False
    assert await records.get_inventory(ctx.store, MANUFACTURER["userId"], stored["productId"]) == 10


@pytest.mark.asyncio
async def test_import_completion_adds_inventory(ctx):
    _, stored = await _create(ctx)
    created = await reconcile.create_order(ctx, RETAILER["userId"], RETAILER, {
        "type": "import", "productId": stored["productId"], "quantity": 4,
        "recipientId": MANUFACTURER["userId"], "supplierName": "Acme Foods",
    })
    await reconcile.update_order_status(ctx, RETAILER["userId"], created["order"]["orderId"],
                                        {"status": "completed"})

    assert await records.get_inventory(ctx.store, RETAILER["userId"], stored["productId"]) == 4
    traces = await records.list_trace_records(ctx.store, stored["productId"])
    assert [t["stage"] for t in traces] == ["Imported"]
    assert traces[0]["companyName"] == "Corner Shop"


@pytest.mark.asyncio
async def test_sale_needs_inventory(ctx):
    _, stored = await _create(ctx)
    with pytest.raises(InventoryError, match="Available: 0"):
        await reconcile.create_order(ctx, RETAILER["userId"], RETAILER, {
            "type": "sale", "productId": stored["productId"], "quantity": 1,
        })


@pytest.mark.asyncio
async def test_order_for_unknown_product(ctx):
    with pytest.raises(NotFoundError):
        await reconcile.create_order(ctx, RETAILER["userId"], RETAILER, {
            "type": "import", "productId": "missing", "quantity": 1,
        })


@pytest.mark.asyncio
async def test_non_completed_status_is_plain_update(ctx, chain_client):
    _, order = await _export_order(ctx)
    calls_before = len(chain_client.submit_calls)

    await reconcile.update_order_status(ctx, MANUFACTURER["userId"], order["orderId"],
                                        {"status": "shipped"})

    saved = await records.get_order(ctx.store, MANUFACTURER["userId"], order["orderId"])
    assert saved["status"] == "shipped"
    assert "completedAt" not in saved
    assert len(chain_client.submit_calls) == calls_before


@pytest.mark.asyncio
async def test_completing_twice_moves_stock_and_history_once(ctx, chain_client):
    stored, order = await _export_order(ctx)
    for _ in range(2):
        result = await reconcile.update_order_status(ctx, MANUFACTURER["userId"], order["orderId"],
                                                     {"status": "completed"})

    assert result["message"] == "Order already completed"
    assert result["traceRecordAdded"] is False
    assert len(await records.list_trace_records(ctx.store, stored["productId"])) == 1
    assert await records.get_inventory(ctx.store, MANUFACTURER["userId"], stored["productId"]) == 7
    functions = [c["function"] for c in chain_client.submit_calls]
    assert functions.count("addTraceRecord") == 1
