"""
records.py - Entity access over the document store.

Key layout (single table):

  USER#<uid>        PROFILE                 user profile       GSI1 TYPE#USER
  USER#<uid>        PRODUCT#<pid>           product            GSI1 TYPE#PRODUCT
  USER#<uid>        ORDER#<oid>             order              GSI1 TYPE#ORDER
  USER#<uid>        INVENTORY#<pid>         inventory count    GSI1 TYPE#INVENTORY
  PRODUCT#<pid>     TRACE#<ts>#<traceId>    trace record       GSI1 TYPE#TRACE

Trace records are append-only: this module has no update or delete for them.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from .errors import InventoryError, NotFoundOrForbidden
from .store.adapter import ConditionalCheckFailed, DocumentStore

log = logging.getLogger("trace.records")


class UserRole:
    CONSUMER = "consumer"
    MANUFACTURER = "manufacturer"
    RETAILER = "retailer"

    ALL = (CONSUMER, MANUFACTURER, RETAILER)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def user_pk(user_id: str) -> str:
    return f"USER#{user_id}"


def product_pk(product_id: str) -> str:
    return f"PRODUCT#{product_id}"


def _public(item: Optional[dict]) -> Optional[dict]:
    """Strip store key fields from a document."""
    if item is None:
        return None
    return {k: v for k, v in item.items() if k not in ("PK", "SK", "GSI1PK", "GSI1SK")}


#  Users

async def get_user_profile(store: DocumentStore, user_id: str) -> dict:
    """Return the caller's profile, creating a consumer profile on first sight."""
    item = await store.get(user_pk(user_id), "PROFILE")
    if item:
        return _public(item)

    now = utc_now()
    profile = {
        "userId": user_id,
        "username": "user_" + user_id[:8],
        "role": UserRole.CONSUMER,
        "createdAt": now,
        "updatedAt": now,
    }
    await store.put({
        "PK": user_pk(user_id), "SK": "PROFILE",
        "GSI1PK": "TYPE#USER", "GSI1SK": profile["username"],
        **profile,
    })
    log.info("created default user profile for %s", user_id)
    return profile


async def save_user_profile(store: DocumentStore, user_id: str, username: str,
                            email: Optional[str] = None, name: Optional[str] = None,
                            role: str = UserRole.CONSUMER, location: Optional[str] = None) -> dict:
    now = utc_now()
    profile = {
        "userId": user_id, "username": username, "email": email,
        "name": name or username, "role": role, "location": location,
        "createdAt": now, "updatedAt": now,
    }
    await store.put({
        "PK": user_pk(user_id), "SK": "PROFILE",
        "GSI1PK": "TYPE#USER", "GSI1SK": username,
        **profile,
    })
    return profile


async def update_user_role(store: DocumentStore, user_id: str, role: str) -> str:
    now = utc_now()
    try:
        await store.update(user_pk(user_id), "PROFILE", {"role": role, "updatedAt": now})
    except ConditionalCheckFailed as exc:
        raise NotFoundOrForbidden() from exc
    return now


async def list_users_by_role(store: DocumentStore, role: str) -> list[dict]:
    return [_public(i) for i in await store.query_index("TYPE#USER", role=role)]


def display_name(profile: dict) -> str:
    return profile.get("name") or profile.get("username") or ""


#  Products

async def put_product(store: DocumentStore, product: dict) -> dict:
    await store.put({
        "PK": user_pk(product["manufacturerId"]),
        "SK": f"PRODUCT#{product['productId']}",
        "GSI1PK": "TYPE#PRODUCT",
        "GSI1SK": f"{product['category']}#{product['name']}",
        **product,
    })
    return product


async def find_product(store: DocumentStore, product_id: str) -> Optional[dict]:
    """Secondary-index lookup by productId, independent of the owner."""
    items = await store.query_index("TYPE#PRODUCT", productId=product_id)
    return _public(items[0]) if items else None


async def get_owned_product(store: DocumentStore, owner_id: str, product_id: str) -> Optional[dict]:
    return _public(await store.get(user_pk(owner_id), f"PRODUCT#{product_id}"))


async def list_products(store: DocumentStore, owner_id: Optional[str] = None) -> list[dict]:
    if owner_id:
        items = await store.query(user_pk(owner_id), "PRODUCT#")
    else:
        items = await store.query_index("TYPE#PRODUCT")
    return [_public(i) for i in items]


async def set_product_fields(store: DocumentStore, owner_id: str, product_id: str,
                             changes: dict) -> dict:
    try:
        item = await store.update(user_pk(owner_id), f"PRODUCT#{product_id}", changes)
    except ConditionalCheckFailed as exc:
        raise NotFoundOrForbidden() from exc
    return _public(item)


async def delete_product(store: DocumentStore, owner_id: str, product_id: str):
    try:
        await store.delete(user_pk(owner_id), f"PRODUCT#{product_id}")
    except ConditionalCheckFailed as exc:
        raise NotFoundOrForbidden() from exc


#  Orders

async def put_order(store: DocumentStore, owner_id: str, order: dict) -> dict:
    await store.put({
        "PK": user_pk(owner_id),
        "SK": f"ORDER#{order['orderId']}",
        "GSI1PK": "TYPE#ORDER",
        "GSI1SK": f"{order['type']}#{order['createdAt']}",
        **order,
    })
    return order


async def get_order(store: DocumentStore, owner_id: str, order_id: str) -> Optional[dict]:
    return _public(await store.get(user_pk(owner_id), f"ORDER#{order_id}"))


async def list_orders(store: DocumentStore, owner_id: str) -> list[dict]:
    return [_public(i) for i in await store.query(user_pk(owner_id), "ORDER#")]


async def set_order_fields(store: DocumentStore, owner_id: str, order_id: str,
                           changes: dict, must_exist: bool = True) -> dict:
    try:
        item = await store.update(user_pk(owner_id), f"ORDER#{order_id}", changes,
                                  must_exist=must_exist)
    except ConditionalCheckFailed as exc:
        raise NotFoundOrForbidden() from exc
    return _public(item)


#  Inventory

async def get_inventory(store: DocumentStore, user_id: str, product_id: str) -> int:
    item = await store.get(user_pk(user_id), f"INVENTORY#{product_id}")
    return int(item.get("quantity", 0)) if item else 0


async def list_inventory(store: DocumentStore, user_id: str) -> list[dict]:
    items = await store.query(user_pk(user_id), "INVENTORY#")
    return [
        {"productId": i["productId"], "quantity": i.get("quantity", 0), "updatedAt": i.get("updatedAt")}
        for i in items
    ]


async def adjust_inventory(store: DocumentStore, user_id: str, product_id: str,
                           quantity: int, operation: str) -> int:
    """Add or subtract stock; the result may never go below zero."""
    current = await get_inventory(store, user_id, product_id)
    new_quantity = current + quantity if operation == "add" else current - quantity
    if new_quantity < 0:
        raise InventoryError("Insufficient inventory quantity")

    await store.put({
        "PK": user_pk(user_id),
        "SK": f"INVENTORY#{product_id}",
        "GSI1PK": "TYPE#INVENTORY",
        "GSI1SK": f"{user_id}#{product_id}",
        "userId": user_id,
        "productId": product_id,
        "quantity": new_quantity,
        "updatedAt": utc_now(),
    })
    log.info("inventory %s/%s: %d -> %d", user_id, product_id, current, new_quantity)
    return new_quantity


#  Trace records

async def append_trace_record(store: DocumentStore, product_id: str, stage: str, company: str,
                              location: str, tx_hash: Optional[str],
                              order: Optional[dict] = None) -> dict:
    order = order or {}
    timestamp = utc_now()
    trace_id = str(uuid.uuid4())
    quantity = order.get("quantity")
    record = {
        "traceId": trace_id,
        "productId": product_id,
        "stage": stage,
        "companyName": company,
        "location": location,
        "blockchainTxHash": tx_hash,
        "details": {
            "quantity": quantity,
            "orderId": order.get("orderId"),
            "location": location,
            "notes": f"{stage} - Quantity: {quantity if quantity is not None else 'N/A'}",
        },
        "timestamp": timestamp,
        "createdAt": timestamp,
    }
    await store.put({
        "PK": product_pk(product_id),
        "SK": f"TRACE#{timestamp}#{trace_id}",
        "GSI1PK": "TYPE#TRACE",
        "GSI1SK": f"{product_id}#{timestamp}",
        **record,
    })
    log.info("trace record saved product=%s stage=%s tx=%s", product_id, stage, tx_hash or "none")
    return record


async def list_trace_records(store: DocumentStore, product_id: str) -> list[dict]:
    items = await store.query(product_pk(product_id), "TRACE#", ascending=True)
    return [_public(i) for i in items]


async def count_products(store: DocumentStore, owner_id: str) -> int:
    return await store.count(user_pk(owner_id), "PRODUCT#")
