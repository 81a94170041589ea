import logging
import math
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import Principal, Role, require_role
from config import Settings
from database import Database
from errors import (
    InsufficientStock,
    MarketError,
    NotAuthenticated,
    NotAuthorized,
    OrderNotFound,
    PersistenceFailure,
    ProductNotFound,
    StorageError,
    ValidationError,
)
from inventory import InventoryStore, ProductQuery
from order_store import OrderStore
from orders import OrderPlacementCoordinator
from schemas import OrderOut, OrderPage, PlaceOrderRequest, ProductOut, ProductPage, StatusUpdateRequest

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: 400,
    InsufficientStock: 400,
    ProductNotFound: 404,
    OrderNotFound: 404,
    NotAuthenticated: 401,
    NotAuthorized: 403,
    StorageError: 500,
    PersistenceFailure: 500,
}


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(database: Optional[Database] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. A database passed in is used as-is and left open on shutdown."""
    settings = settings or Settings.from_env()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.database is None
        if owned:
            app.state.database = Database.open(settings)
        try:
            if owned:
                app.state.database.ensure_indexes()
            yield
        finally:
            if owned:
                app.state.database.close()
                app.state.database = None

    app = FastAPI(title="LokalFarmers Marketplace API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketError)
    async def market_error_handler(request: Request, exc: MarketError) -> JSONResponse:
        status_code = ERROR_STATUS_CODES.get(type(exc), 500)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={"errors": exc.errors(), "error_type": type(exc).__name__},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"field": ".".join(str(p) for p in e["loc"][1:]) or None, "message": e["msg"]}
            for e in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"errors": errors, "error_type": "ValidationError"})

    register_routes(app)
    return app


# ----- Dependencies -----

def get_inventory(request: Request) -> InventoryStore:
    return InventoryStore(request.app.state.database)


def get_order_store(request: Request) -> OrderStore:
    return OrderStore(request.app.state.database)


def get_coordinator(
    inventory: InventoryStore = Depends(get_inventory),
    orders: OrderStore = Depends(get_order_store),
) -> OrderPlacementCoordinator:
    return OrderPlacementCoordinator(inventory, orders)


def register_routes(app: FastAPI) -> None:
    # ----- Health -----
    @app.get("/")
    def read_root():
        return {"message": "LokalFarmers API running"}

    @app.get("/test")
    def test_database(request: Request):
        database: Database = request.app.state.database
        response = {
            "backend": "Running",
            "database": "Not Available",
            "database_name": None,
            "reconciliation_backlog": None,
        }
        if database is None:
            return response
        response["database_name"] = database.name
        if not database.ping():
            response["database"] = "Connected but not responding"
            return response
        response["database"] = "Connected & Working"
        try:
            response["reconciliation_backlog"] = OrderStore(database).count_needing_reconciliation()
        except StorageError as e:
            response["database"] = f"Connected but Error: {str(e)[:80]}"
        return response

    # ----- Products -----
    @app.get("/api/products", response_model=ProductPage)
    def list_products(
        request: Request,
        page: int = Query(1),
        limit: Optional[int] = Query(None),
        category: Optional[str] = Query(None),
        min_price: Optional[float] = Query(None, alias="minPrice"),
        max_price: Optional[float] = Query(None, alias="maxPrice"),
        search: Optional[str] = Query(None),
        inventory: InventoryStore = Depends(get_inventory),
    ):
        query = ProductQuery(
            page=page,
            limit=request.app.state.settings.default_page_limit if limit is None else limit,
            category=category,
            min_price=min_price,
            max_price=max_price,
            search=search,
        )
        return inventory.list_products(query)

    @app.get("/api/products/myproducts", response_model=List[ProductOut])
    def my_products(
        principal: Principal = Depends(require_role(Role.FARMER)),
        inventory: InventoryStore = Depends(get_inventory),
    ):
        return inventory.list_for_farmer(principal.user_id)

    @app.get("/api/products/{product_id}", response_model=ProductOut)
    def get_product(product_id: str, inventory: InventoryStore = Depends(get_inventory)):
        return ProductOut.from_doc(inventory.get_by_id(product_id))

    # ----- Orders -----
    @app.post("/api/orders", response_model=OrderOut, status_code=201)
    def place_order(
        req: PlaceOrderRequest,
        principal: Principal = Depends(require_role(Role.CONSUMER)),
        coordinator: OrderPlacementCoordinator = Depends(get_coordinator),
    ):
        return coordinator.place_order(principal, req.products, req.shipping_address)

    @app.get("/api/orders/myorders", response_model=List[OrderOut])
    def my_orders(
        principal: Principal = Depends(require_role(Role.CONSUMER)),
        orders: OrderStore = Depends(get_order_store),
    ):
        return [OrderOut.from_doc(d) for d in orders.list_for_consumer(principal.user_id)]

    @app.get("/api/orders/farmerorders", response_model=List[OrderOut])
    def farmer_orders(
        principal: Principal = Depends(require_role(Role.FARMER)),
        inventory: InventoryStore = Depends(get_inventory),
        orders: OrderStore = Depends(get_order_store),
    ):
        product_ids = inventory.product_ids_for_farmer(principal.user_id)
        return [OrderOut.from_doc(d) for d in orders.list_containing_products(product_ids)]

    # ----- Admin -----
    admin = require_role(Role.ADMIN)

    @app.get("/api/admin/products", response_model=ProductPage, dependencies=[Depends(admin)])
    def admin_list_products(
        page: int = Query(1),
        limit: int = Query(10),
        inventory: InventoryStore = Depends(get_inventory),
    ):
        return inventory.list_products(ProductQuery(page=page, limit=limit))

    @app.get("/api/admin/orders", response_model=OrderPage, dependencies=[Depends(admin)])
    def admin_list_orders(
        page: int = Query(1),
        limit: int = Query(10),
        orders: OrderStore = Depends(get_order_store),
    ):
        docs, total = orders.list_page(page, limit)
        return OrderPage(
            orders=[OrderOut.from_doc(d) for d in docs],
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
            total_orders=total,
        )

    @app.get("/api/admin/orders/reconciliation", response_model=List[OrderOut], dependencies=[Depends(admin)])
    def admin_reconciliation_backlog(orders: OrderStore = Depends(get_order_store)):
        return [OrderOut.from_doc(d) for d in orders.list_needing_reconciliation()]

    @app.get("/api/admin/orders/{order_id}", response_model=OrderOut, dependencies=[Depends(admin)])
    def admin_get_order(order_id: str, orders: OrderStore = Depends(get_order_store)):
        return OrderOut.from_doc(orders.get(order_id))

    @app.put("/api/admin/orders/{order_id}/status", response_model=OrderOut, dependencies=[Depends(admin)])
    def admin_update_status(order_id: str, req: StatusUpdateRequest, orders: OrderStore = Depends(get_order_store)):
        return OrderOut.from_doc(orders.update_status(order_id, req.status))

    @app.post(
        "/api/admin/orders/{order_id}/reconciliation/resolve",
        response_model=OrderOut,
        dependencies=[Depends(admin)],
    )
    def admin_resolve_reconciliation(order_id: str, orders: OrderStore = Depends(get_order_store)):
        return OrderOut.from_doc(orders.resolve_reconciliation(order_id))


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
