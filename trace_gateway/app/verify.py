"""
verify.py - Product verification and trace history.

Two sources of truth, merged:
  chain  - is the product real, what is its current status (getProduct)
  store  - descriptive fields and the append-only trace history

The chain decides existence. A product found on chain but missing from
the store (migrated or manually inserted data) still verifies; the store
part of the answer is simply null.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from . import records
from .bootstrap import ServiceContext
from .errors import NotFoundError, ValidationError

log = logging.getLogger("trace.verify")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


async def read_chain_product(ctx: ServiceContext, product_id: str) -> Optional[dict]:
    """On-chain ProductState, or None when absent, empty or unreadable."""
    state = await ctx.chain.ensure_ready()
    if not state.ready:
        log.warning("blockchain not initialized, cannot read product %s", product_id)
        return None

    try:
        result = await state.client.call("getProduct", (str(product_id).strip(),))
    except Exception as exc:
        log.warning("blockchain read failed for %s: %s", product_id, exc)
        return None

    if not result or len(result) < 5 or not result[0]:
        log.info("product %s not found on blockchain", product_id)
        return None

    return {
        "name": str(result[0]),
        "batch": str(result[1] or ""),
        "manufacturer": str(result[2] or ""),
        "status": str(result[3] or "Created"),
        "timestamp": int(result[4] or 0),
    }


def product_view(item: dict, quantity: Optional[int] = None) -> dict:
    return {
        "id": item["productId"],
        "name": item.get("name"),
        "category": item.get("category"),
        "description": item.get("description"),
        "batch": item.get("batch"),
        "quantity": item.get("quantity", 0) if quantity is None else quantity,
        "originalQuantity": item.get("quantity", 0),
        "price": item.get("price", 0),
        "manufacturer": item.get("manufacturer"),
        "manufacturerId": item.get("manufacturerId"),
        "blockchainTxHash": item.get("blockchainTxHash"),
        "blockchainStatus": item.get("blockchainStatus"),
        "currentStatus": item.get("currentStatus"),
        "lastBlockchainTxHash": item.get("lastBlockchainTxHash"),
        "createdAt": item.get("createdAt"),
        "updatedAt": item.get("updatedAt"),
    }


async def get_product(ctx: ServiceContext, product_id: str, user_id: Optional[str] = None,
                      role: Optional[str] = None) -> dict:
    """Store record enriched with the on-chain state."""
    if not product_id:
        raise ValidationError("Product ID is required")
    item = await records.find_product(ctx.store, product_id)
    if not item:
        raise NotFoundError("Product not found")

    quantity = None
    if role == records.UserRole.RETAILER and item.get("manufacturerId") != user_id:
        quantity = await records.get_inventory(ctx.store, user_id, product_id)

    chain_data = await read_chain_product(ctx, product_id)
    return {
        **product_view(item, quantity),
        "blockchainData": chain_data,
        "blockchainVerified": chain_data is not None,
    }


async def verify_product(ctx: ServiceContext, product_id: str) -> dict:
    if not product_id:
        raise ValidationError("Product code is required")

    chain_data = await read_chain_product(ctx, product_id)
    if chain_data is None:
        return {
            "verified": False,
            "productId": product_id,
            "message": "Product not found on blockchain",
        }

    result = {
        "verified": True,
        "productId": product_id,
        "blockchainData": chain_data,
        "databaseData": None,
        "verificationTime": records.utc_now(),
    }
    item = await records.find_product(ctx.store, product_id)
    if item:
        result["databaseData"] = product_view(item)
    else:
        result["note"] = "Product verified on blockchain but not found in database"
    return result


def parse_timestamp(value) -> datetime:
    """ISO-8601 to an aware datetime; unparseable values sort first."""
    if not value:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def trace_entry(item: dict) -> dict:
    details = item.get("details") or {}
    timestamp = item.get("timestamp") or item.get("createdAt") or ""
    quantity = details.get("quantity")
    return {
        "stage": item.get("stage"),
        "company": item.get("companyName"),
        "date": timestamp.split("T")[0],
        "timestamp": timestamp,
        "location": item.get("location") or "N/A",
        "details": details.get("notes")
                   or f"{item.get('stage')} - Quantity: {quantity if quantity is not None else 'N/A'}",
        "blockchainTxHash": item.get("blockchainTxHash") or "N/A",
    }


async def trace_product(ctx: ServiceContext, product_id: str) -> dict:
    verification = await verify_product(ctx, product_id)
    if not verification["verified"]:
        raise NotFoundError("Failed to trace product: Product not found or invalid")

    items = await records.list_trace_records(ctx.store, product_id)
    # the store orders by sort key; re-sort on the parsed timestamp anyway
    items.sort(key=lambda i: parse_timestamp(i.get("timestamp") or i.get("createdAt")))

    chain_data = verification["blockchainData"]
    return {
        "productId": product_id,
        "productName": chain_data["name"],
        "manufacturer": chain_data["manufacturer"],
        "batch": chain_data["batch"],
        "currentStatus": chain_data["status"],
        "blockchainVerified": True,
        "blockchainTimestamp": chain_data["timestamp"],
        "trace": [trace_entry(i) for i in items],
    }


async def verify_and_trace(ctx: ServiceContext, product_id: str) -> dict:
    return await trace_product(ctx, product_id)
