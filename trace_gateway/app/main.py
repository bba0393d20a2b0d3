import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import reconcile, records, verify
from .backstop import reconcile_worker
from .bootstrap import ServiceContext, create_context
from .config import (
    DEFAULT_COMPANY_LOCATION, LOG_LEVEL, RECONCILE_INTERVAL_SECONDS, SERVICE_VERSION, STORE_BACKEND,
)
from .errors import TraceGatewayError
from .metrics import collector
from .roles import current_user, require_permission
from .schemas import (
    OrderIn, OrderStatusUpdate, ProductIn, ProductUpdate, ProfileIn, RoleUpdate, TraceView, VerifyResult,
)
from .store.adapter import ConditionalCheckFailed

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("trace_gateway")

router = APIRouter()


async def service_context(request: Request) -> ServiceContext:
    """Per-request dependency; settles chain bootstrap on first use."""
    ctx: ServiceContext = request.app.state.ctx
    await ctx.chain.ensure_ready()
    return ctx


# System endpoints

@router.get("/health", tags=["system"])
async def health(ctx: ServiceContext = Depends(service_context)):
    return {
        "status": "healthy",
        "timestamp": records.utc_now(),
        "version": SERVICE_VERSION,
        "blockchain": ctx.chain.describe(),
        "database": {"backend": STORE_BACKEND},
    }


@router.get("/metrics", tags=["system"])
def metrics(recent: int = Query(default=0, ge=0, le=500)):
    """Chain submission latency and outcome counters, plus the last `recent` attempts."""
    body = asdict(collector.summary())
    if recent:
        body["recent"] = [asdict(m) for m in collector.recent(recent)]
    return body


# Public verification - no identity required

@router.get("/public/verify", tags=["public"], response_model=VerifyResult,
            response_model_exclude_none=True)
async def public_verify(code: str = Query(default=""),
                        ctx: ServiceContext = Depends(service_context)):
    return await verify.verify_product(ctx, code)


@router.get("/public/trace", tags=["public"], response_model=TraceView)
async def public_trace(code: str = Query(default=""),
                       ctx: ServiceContext = Depends(service_context)):
    return await verify.verify_and_trace(ctx, code)


@router.get("/verify", tags=["verification"], response_model=VerifyResult,
            response_model_exclude_none=True,
            dependencies=[Depends(current_user)])
async def verify_product(code: str = Query(default=""),
                         ctx: ServiceContext = Depends(service_context)):
    return await verify.verify_product(ctx, code)


@router.get("/trace", tags=["verification"], response_model=TraceView,
            dependencies=[Depends(current_user)])
async def trace_product(code: str = Query(default=""),
                        ctx: ServiceContext = Depends(service_context)):
    return await verify.verify_and_trace(ctx, code)


# Users

@router.get("/users/me", tags=["users"])
async def me(profile: dict = Depends(current_user)):
    return profile


@router.post("/users/register", tags=["users"])
async def register(body: ProfileIn,
                   profile: dict = Depends(current_user),
                   ctx: ServiceContext = Depends(service_context)):
    """Record sign-up details. The caller's current role is kept."""
    username = body.username or (body.email.split("@")[0] if body.email else profile["username"])
    saved = await records.save_user_profile(
        ctx.store, profile["userId"], username,
        email=body.email, name=body.name,
        role=profile.get("role") or records.UserRole.CONSUMER,
        location=body.location,
    )
    log.info("user %s registered as %s", profile["userId"], username)
    return {"message": "User profile saved successfully", "profile": saved}


@router.post("/users/update-role", tags=["users"])
async def update_role(body: RoleUpdate,
                      profile: dict = Depends(current_user),
                      ctx: ServiceContext = Depends(service_context)):
    updated_at = await records.update_user_role(ctx.store, profile["userId"], body.role.value)
    log.info("user %s role -> %s", profile["userId"], body.role.value)
    return {"message": "User role updated successfully", "role": body.role.value, "updatedAt": updated_at}


# Products

@router.get("/products", tags=["products"])
async def list_products(scope: str = Query(default="all"),
                        profile: dict = Depends(current_user),
                        ctx: ServiceContext = Depends(service_context)):
    user_id, role = profile["userId"], profile.get("role")
    personal = scope == "personal" and role == records.UserRole.MANUFACTURER
    items = await records.list_products(ctx.store, user_id if personal else None)

    async def view(item: dict) -> dict:
        quantity = None
        if role == records.UserRole.RETAILER and item.get("manufacturerId") != user_id:
            quantity = await records.get_inventory(ctx.store, user_id, item["productId"])
        return verify.product_view(item, quantity)

    return {"products": list(await asyncio.gather(*(view(i) for i in items)))}


@router.post("/products", tags=["products"])
async def create_product(body: ProductIn,
                         profile: dict = Depends(require_permission("create_product")),
                         ctx: ServiceContext = Depends(service_context)):
    """Register on chain, then store. A chain failure is recorded, not raised."""
    return await reconcile.create_product(ctx, profile["userId"], profile, body.model_dump())


@router.get("/products/{product_id}", tags=["products"])
async def get_product(product_id: str,
                      profile: dict = Depends(current_user),
                      ctx: ServiceContext = Depends(service_context)):
    return await verify.get_product(ctx, product_id, profile["userId"], profile.get("role"))


@router.put("/products/{product_id}", tags=["products"])
async def update_product(product_id: str, body: ProductUpdate,
                         profile: dict = Depends(require_permission("update_product")),
                         ctx: ServiceContext = Depends(service_context)):
    return await reconcile.update_product_status(ctx, profile["userId"], product_id,
                                                 body.model_dump())


@router.delete("/products/{product_id}", tags=["products"])
async def delete_product(product_id: str,
                         profile: dict = Depends(require_permission("delete_product")),
                         ctx: ServiceContext = Depends(service_context)):
    return await reconcile.delete_product(ctx, profile["userId"], product_id)


# Orders

@router.get("/orders", tags=["orders"])
async def list_orders(profile: dict = Depends(current_user),
                      ctx: ServiceContext = Depends(service_context)):
    items = await records.list_orders(ctx.store, profile["userId"])
    return {"orders": [
        {
            "id": i["orderId"],
            "type": i.get("type"),
            "productId": i.get("productId"),
            "productName": i.get("productName"),
            "quantity": i.get("quantity"),
            "status": i.get("status"),
            "recipientName": i.get("recipientName") or i.get("recipientId"),
            "supplierName": i.get("supplierName") or i.get("supplierId"),
            "customerInfo": i.get("customerInfo"),
            "notes": i.get("notes"),
            "createdAt": i.get("createdAt"),
            "updatedAt": i.get("updatedAt"),
            "completedAt": i.get("completedAt"),
        }
        for i in items
    ]}


@router.post("/orders", tags=["orders"])
async def create_order(body: OrderIn,
                       profile: dict = Depends(require_permission("manage_orders")),
                       ctx: ServiceContext = Depends(service_context)):
    return await reconcile.create_order(ctx, profile["userId"], profile, body.model_dump(mode="json"))


@router.put("/orders/{order_id}", tags=["orders"])
async def update_order(order_id: str, body: OrderStatusUpdate,
                       profile: dict = Depends(require_permission("manage_orders")),
                       ctx: ServiceContext = Depends(service_context)):
    """Completing an order moves inventory and appends a trace stage."""
    return await reconcile.update_order_status(ctx, profile["userId"], order_id, body.model_dump())


# Directory and inventory

@router.get("/manufacturers", tags=["directory"], dependencies=[Depends(current_user)])
async def list_manufacturers(ctx: ServiceContext = Depends(service_context)):
    users = await records.list_users_by_role(ctx.store, records.UserRole.MANUFACTURER)
    counts = await asyncio.gather(*(records.count_products(ctx.store, u["userId"]) for u in users))
    return {"manufacturers": [
        {
            "id": u["userId"],
            "name": records.display_name(u),
            "location": u.get("location") or DEFAULT_COMPANY_LOCATION,
            "products": count,
            "email": u.get("email"),
        }
        for u, count in zip(users, counts)
    ]}


@router.get("/retailers", tags=["directory"], dependencies=[Depends(current_user)])
async def list_retailers(ctx: ServiceContext = Depends(service_context)):
    users = await records.list_users_by_role(ctx.store, records.UserRole.RETAILER)
    return {"retailers": [
        {
            "id": u["userId"],
            "name": records.display_name(u),
            "location": u.get("location") or DEFAULT_COMPANY_LOCATION,
            "email": u.get("email"),
        }
        for u in users
    ]}


@router.get("/inventory", tags=["inventory"])
async def inventory(profile: dict = Depends(current_user),
                    ctx: ServiceContext = Depends(service_context)):
    items = await records.list_inventory(ctx.store, profile["userId"])
    products = await asyncio.gather(*(records.find_product(ctx.store, i["productId"]) for i in items))
    detailed = [
        {
            **item,
            "productName": (product or {}).get("name") or "Unknown Product",
            "category": (product or {}).get("category") or "Unknown",
            "manufacturer": (product or {}).get("manufacturer") or "Unknown",
        }
        for item, product in zip(items, products)
    ]
    return {
        "inventory": detailed,
        "totalItems": len(detailed),
        "totalQuantity": sum(i["quantity"] for i in detailed),
    }


def create_app(ctx: Optional[ServiceContext] = None) -> FastAPI:
    """Build the gateway application around one process-scoped context."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.ctx.store.init()
        worker = None
        if RECONCILE_INTERVAL_SECONDS > 0:
            worker = asyncio.create_task(reconcile_worker(app.state.ctx, RECONCILE_INTERVAL_SECONDS))
        try:
            yield
        finally:
            if worker is not None:
                worker.cancel()
            await app.state.ctx.store.close()

    app = FastAPI(
        title="Product Trace Gateway",
        description=(
            "REST API for registering products on an Ethereum registry contract "
            "and tracing them through export, import and sale orders.\n\n"
            "**Identity**: pass `X-User-Id`; the role comes from the stored profile."
        ),
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.ctx = ctx or create_context()
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.include_router(router)

    @app.exception_handler(TraceGatewayError)
    async def gateway_error(request: Request, exc: TraceGatewayError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(ConditionalCheckFailed)
    async def conditional_failed(request: Request, exc: ConditionalCheckFailed):
        return JSONResponse(status_code=400,
                            content={"message": "Item does not exist or you do not have permission"})

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        log.error("handler error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={
            "message": "Internal server error",
            "error": str(exc),
            "blockchain": "connected" if request.app.state.ctx.chain.ready else "disconnected",
        })

    return app


app = create_app()
