import logging
from typing import Any, List

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

from auth import CurrentUser, get_current_user
from config import Settings, get_settings
from database import get_db
from errors import MarketError
from inventory import InventoryStore, product_out
from orders import OrderService
from schemas import OrderIn, OrderOut, OrderPlaced, Product, ProductOut, ProductUpdate, StatusUpdate

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Farm Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Errors ----------

@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=400,
        content={"message": message, "error": "validation_error", "details": jsonable_errors(errors)},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server error", "error": "server_error"})


def jsonable_errors(errors: List[dict]) -> List[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors]


# ---------- Dependencies ----------

def get_order_service(db: Database = Depends(get_db), settings: Settings = Depends(get_settings)) -> OrderService:
    return OrderService(db, settings)


def get_inventory(db: Database = Depends(get_db)) -> InventoryStore:
    return InventoryStore(db)


# ---------- Basic Routes ----------

@app.get("/")
def read_root():
    return {"message": "Farm Marketplace Backend Running"}


@app.get("/api/health")
def health():
    response = {"backend": "running", "database": "not configured", "collections": []}
    try:
        db = get_db()
    except MarketError:
        return response
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "connected"
    except Exception as e:
        response["database"] = f"error: {str(e)[:50]}"
    return response


# ---------- Product Routes ----------

@app.get("/api/products", response_model=List[ProductOut])
def list_products(inventory: InventoryStore = Depends(get_inventory)) -> Any:
    return [product_out(d) for d in inventory.list_visible()]


@app.post("/api/products", response_model=ProductOut, status_code=201)
def create_product(
    product: Product,
    user: CurrentUser = Depends(get_current_user),
    inventory: InventoryStore = Depends(get_inventory),
):
    return product_out(inventory.create(user, product))


@app.get("/api/products/farmer/{farmer_id}", response_model=List[ProductOut])
def list_farmer_products(farmer_id: str, inventory: InventoryStore = Depends(get_inventory)):
    return [product_out(d) for d in inventory.list_by_farmer(farmer_id)]


@app.patch("/api/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: str,
    updates: ProductUpdate,
    user: CurrentUser = Depends(get_current_user),
    inventory: InventoryStore = Depends(get_inventory),
):
    return product_out(inventory.update(product_id, updates, user))


# ---------- Order Routes ----------

@app.post("/api/orders", response_model=OrderPlaced, status_code=201)
@app.post("/api/products/order", response_model=OrderPlaced, status_code=201)
def place_order(
    cart: OrderIn,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = service.place_order(user.id, cart)
    return {"message": "Order placed successfully", "order": order}


@app.get("/api/orders", response_model=List[OrderOut])
def list_my_orders(
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    return service.list_orders_for_user(user)


@app.get("/api/orders/customer/{customer_id}", response_model=List[OrderOut])
def list_customer_orders(
    customer_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    return service.list_orders_for_customer(customer_id, user)


@app.get("/api/orders/farmer", response_model=List[OrderOut])
def list_own_farmer_orders(
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    return service.list_orders_for_seller(user.id, user)


@app.get("/api/orders/farmer/{farmer_id}", response_model=List[OrderOut])
def list_farmer_orders(
    farmer_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    return service.list_orders_for_seller(farmer_id, user)


@app.patch("/api/orders/{order_id}", response_model=OrderOut)
def update_order_status(
    order_id: str,
    body: StatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    return service.update_status(order_id, body.status, user)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
