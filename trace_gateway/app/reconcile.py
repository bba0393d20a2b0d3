"""
reconcile.py - Chain-then-store writes for every business operation.

Each operation attempts its contract call at most once and then writes
the store exactly once. What a chain Failure means depends on the path:

  product creation    -> store record written with blockchainStatus=failed
  trace append        -> failure logged, trace stored with a null tx hash
  product status      -> store NOT updated, ChainUpdateError raised

Ownership is checked before any contract call, and an order already
marked completed is never completed twice.

When bootstrap ended DEGRADED no contract call is made at all and
creation records are tagged not_registered.
"""
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .bootstrap import ServiceContext
from .config import DEFAULT_TRACE_LOCATION
from .errors import ChainUpdateError, InventoryError, NotFoundError, NotFoundOrForbidden, ValidationError
from . import records
from .ledger.operations import ADD_TRACE, REGISTER_PRODUCT, UPDATE_STATUS, ContractOperation
from .ledger.outcome import Failure, FailureKind, Success, TransactionOutcome
from .store.adapter import ConditionalCheckFailed

log = logging.getLogger("trace.reconcile")


class ChainStatus(str, Enum):
    PENDING        = "pending"
    REGISTERED     = "registered"
    NOT_REGISTERED = "not_registered"
    FAILED         = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    store_status: ChainStatus
    tx_hash: Optional[str] = None
    error: Optional[Failure] = None

    def as_dict(self) -> dict:
        return {
            "storeStatus": self.store_status.value,
            "txHash": self.tx_hash,
            "error": self.error.as_dict() if self.error else None,
        }


_UNAVAILABLE = Failure(kind=FailureKind.UNAVAILABLE, message="Blockchain not initialized")


async def submit_chain_transaction(ctx: ServiceContext, operation: ContractOperation,
                                   args) -> TransactionOutcome:
    """Attempt one contract call. Never raises."""
    state = await ctx.chain.ensure_ready()
    if not state.ready:
        return _UNAVAILABLE
    return await state.submitter.submit(operation, *args)


async def reconcile_write(ctx: ServiceContext, operation: ContractOperation, args) -> ReconcileResult:
    """Decide the store-side chain status for one write."""
    state = await ctx.chain.ensure_ready()
    if not state.ready:
        log.warning("blockchain not initialized, skipping %s", operation.function_name)
        return ReconcileResult(ChainStatus.NOT_REGISTERED)

    outcome = await state.submitter.submit(operation, *args)
    if isinstance(outcome, Success):
        return ReconcileResult(ChainStatus.REGISTERED, tx_hash=outcome.tx_hash)
    return ReconcileResult(ChainStatus.FAILED, error=outcome)


def _to_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


#  Products

async def create_product(ctx: ServiceContext, user_id: str, profile: dict, data: dict) -> dict:
    name = (data.get("name") or "").strip()
    category = (data.get("category") or "").strip()
    batch = (data.get("batch") or "").strip()
    if not name or not category or not batch:
        raise ValidationError("Product name, category, and batch are required")

    product_id = str(uuid.uuid4())
    manufacturer = records.display_name(profile)
    quantity = _to_int(data.get("quantity"))
    now = records.utc_now()

    result = await reconcile_write(ctx, REGISTER_PRODUCT, (product_id, name, batch, manufacturer))

    product = {
        "productId": product_id,
        "name": name,
        "category": category,
        "description": data.get("description"),
        "batch": batch,
        "quantity": quantity,
        "price": _to_int(data.get("price")),
        "manufacturer": manufacturer,
        "manufacturerId": user_id,
        "blockchainTxHash": result.tx_hash,
        "blockchainStatus": result.store_status.value,
        "createdAt": now,
        "updatedAt": now,
    }
    await records.put_product(ctx.store, product)
    await records.adjust_inventory(ctx.store, user_id, product_id, quantity, "add")

    if result.tx_hash:
        message = "Product created and registered on blockchain successfully"
    else:
        message = f"Product created successfully (blockchain status: {result.store_status.value})"

    response = {"message": message, "product": {"id": product_id, **product}}
    if result.error:
        response["blockchainError"] = result.error.as_dict()
    return response


async def update_product_status(ctx: ServiceContext, user_id: str, product_id: str,
                                data: dict) -> dict:
    """Mirror a chain-confirmed status transition; no store write without one."""
    status = (data.get("status") or "").strip()
    if not status:
        return {"message": "Product updated successfully"}

    if not await records.get_owned_product(ctx.store, user_id, product_id):
        raise NotFoundOrForbidden()

    outcome = await submit_chain_transaction(ctx, UPDATE_STATUS, (product_id, status))
    if not outcome.ok:
        raise ChainUpdateError(f"Failed to update product status: {outcome.message}", outcome)

    await records.set_product_fields(ctx.store, user_id, product_id, {
        "currentStatus": status,
        "lastBlockchainTxHash": outcome.tx_hash,
        "updatedAt": records.utc_now(),
    })
    return {
        "message": "Product status updated on blockchain successfully",
        "blockchainTxHash": outcome.tx_hash,
    }


async def delete_product(ctx: ServiceContext, user_id: str, product_id: str) -> dict:
    await records.delete_product(ctx.store, user_id, product_id)
    return {"message": "Product deleted successfully"}


#  Orders

async def create_order(ctx: ServiceContext, user_id: str, profile: dict, data: dict) -> dict:
    order_type = data.get("type")
    product_id = data.get("productId")
    quantity = _to_int(data.get("quantity"))
    if order_type not in ("export", "import", "sale"):
        raise ValidationError("Order type must be one of: export, import, sale")
    if not product_id or quantity <= 0:
        raise ValidationError("Product ID and valid quantity are required")

    product = await records.find_product(ctx.store, product_id)
    if not product:
        raise NotFoundError("Product not found")

    if order_type == "sale":
        available = await records.get_inventory(ctx.store, user_id, product_id)
        if available < quantity:
            raise InventoryError(
                f"Insufficient inventory. Available: {available}, Requested: {quantity}"
            )

    now = records.utc_now()
    recipient_id = data.get("recipientId") or ""
    order = {
        "orderId": str(uuid.uuid4()),
        "type": order_type,
        "productId": product_id,
        "productName": product["name"],
        "quantity": quantity,
        "status": "pending",
        "createdBy": user_id,
        "createdByName": records.display_name(profile),
        "notes": data.get("notes") or "",
        "createdAt": now,
        "updatedAt": now,
    }
    if order_type == "export":
        order["recipientId"] = recipient_id
        order["recipientName"] = data.get("recipientName") or recipient_id
    elif order_type == "import":
        order["supplierId"] = recipient_id
        order["supplierName"] = data.get("supplierName") or recipient_id
    else:
        order["customerInfo"] = data.get("customerInfo") or recipient_id

    await records.put_order(ctx.store, user_id, order)
    return {"message": "Order created successfully", "order": {"id": order["orderId"], **order}}


async def append_trace(ctx: ServiceContext, product_id: str, stage: str, company: str,
                       location: str, order: dict) -> dict:
    """Record one supply-chain stage. Chain problems never stop the append."""
    result = await reconcile_write(ctx, ADD_TRACE, (product_id, stage, company, location))
    if result.error:
        log.warning("trace record for %s stored without blockchain tx: %s (%s)",
                    product_id, result.error.kind.value, result.error.detail or result.error.message)
    return await records.append_trace_record(
        ctx.store, product_id, stage, company, location, result.tx_hash, order,
    )


_COMPLETION_RULES = {
    # order type -> (trace stage or None, inventory operation)
    "export": ("Exported", "subtract"),
    "import": ("Imported", "add"),
    "sale":   (None, "subtract"),
}


async def update_order_status(ctx: ServiceContext, user_id: str, order_id: str,
                              data: dict) -> dict:
    status = (data.get("status") or "").strip()
    if not status:
        raise ValidationError("Order status is required")

    if status != "completed":
        await records.set_order_fields(ctx.store, user_id, order_id, {
            "status": status, "updatedAt": records.utc_now(),
        })
        return {"message": "Order status updated successfully"}

    order = await records.get_order(ctx.store, user_id, order_id)
    if not order:
        raise NotFoundError("Order not found")
    if order.get("status") == "completed":
        return {
            "message": "Order already completed",
            "traceRecordAdded": False,
            "blockchainTxHash": None,
        }
    product = await records.find_product(ctx.store, order["productId"])
    if not product:
        raise NotFoundError("Product information not found")

    trace = None
    stage, inventory_op = _COMPLETION_RULES.get(order["type"], (None, None))
    try:
        if inventory_op:
            await records.adjust_inventory(ctx.store, user_id, order["productId"],
                                           order["quantity"], inventory_op)
        if stage:
            trace = await append_trace(ctx, order["productId"], stage, order["createdByName"],
                                       DEFAULT_TRACE_LOCATION, order)
    except (InventoryError, ConditionalCheckFailed, NotFoundOrForbidden) as exc:
        log.error("error processing completed order %s: %s", order_id, exc)

    now = records.utc_now()
    await records.set_order_fields(ctx.store, user_id, order_id, {
        "status": status, "updatedAt": now, "completedAt": now,
    }, must_exist=False)

    tx_hash = trace["blockchainTxHash"] if trace else None
    return {
        "message": "Order completed successfully",
        "traceRecordAdded": trace is not None,
        "blockchainTxHash": tx_hash,
    }
