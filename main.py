import csv
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from io import StringIO
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import orders
from auth import authenticate_admin, create_access_token, get_current_admin, get_password_hash
from database import get_db, init_db, ping
from mailer import Mailer, get_mailer
from models import AdminUser, Order as OrderRow, Product as ProductRow, WishlistEntry
from schemas import (
    AdminCredentials,
    Analytics,
    InventoryItem,
    Order,
    OrderCreate,
    OrderCreated,
    Product,
    ProductIn,
    StatusChange,
    StockUpdate,
    StoreSettings,
    StoreSettingsUpdate,
    Token,
    WishlistAdd,
)
from store_settings import load_store_settings, save_store_settings

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="PolyForm Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses are always {"error": ...}

@app.exception_handler(orders.StoreError)
def store_error_handler(request: Request, exc: orders.StoreError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(SQLAlchemyError)
def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def get_product_or_404(db: Session, product_id: int) -> ProductRow:
    product = db.get(ProductRow, product_id)
    if product is None:
        raise HTTPException(404, "Product not found")
    return product


@app.get("/")
def root():
    return {"message": "PolyForm Storefront Backend Running"}


@app.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        ping(db)
        return {"backend": "ok", "db": "ok"}
    except SQLAlchemyError as e:
        return {"backend": "ok", "db": f"error: {str(e)[:80]}"}


# Auth endpoints
@app.post("/auth/login", response_model=Token)
def login(payload: AdminCredentials, db: Session = Depends(get_db)):
    user = authenticate_admin(db, payload.username, payload.password)
    if not user:
        raise HTTPException(status_code=400, detail="Incorrect username or password")

    access_token = create_access_token(data={"sub": user.username})
    return {"access_token": access_token, "token_type": "bearer"}


# Bootstrap the first admin; refused once any admin exists
@app.post("/auth/seed-admin", status_code=201)
def seed_admin(payload: AdminCredentials, db: Session = Depends(get_db)):
    if db.scalar(select(func.count(AdminUser.id))):
        raise HTTPException(status_code=409, detail="Admin already exists")
    db.add(AdminUser(username=payload.username, password_hash=get_password_hash(payload.password)))
    db.commit()
    logger.info("Seeded admin user %s", payload.username)
    return {"status": "created"}


# Products public endpoints
@app.get("/products", response_model=List[Product])
def list_products(q: Optional[str] = None, category: Optional[str] = None, db: Session = Depends(get_db)):
    query = select(ProductRow).order_by(ProductRow.created_at.desc(), ProductRow.id.desc())
    if q:
        pattern = f"%{q}%"
        query = query.where(or_(ProductRow.name.ilike(pattern), ProductRow.description.ilike(pattern)))
    if category:
        query = query.where(ProductRow.category == category)
    return db.scalars(query).all()


@app.get("/products/{product_id}", response_model=Product)
def get_product(product_id: int, db: Session = Depends(get_db)):
    return get_product_or_404(db, product_id)


# Admin product management
@app.post("/products", response_model=Product, status_code=201)
def create_product(product: ProductIn, db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    row = ProductRow(**product.model_dump())
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Product %s created: %s", row.id, row.name)
    return row


@app.put("/products/{product_id}", response_model=Product)
def update_product(product_id: int, product: ProductIn, db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    row = get_product_or_404(db, product_id)
    # fields left out of the body, stock included, keep their stored values
    for field, value in product.model_dump(exclude_unset=True).items():
        setattr(row, field, value)
    db.commit()
    db.refresh(row)
    return row


@app.delete("/products/{product_id}")
def delete_product(product_id: int, db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    row = get_product_or_404(db, product_id)
    db.execute(delete(WishlistEntry).where(WishlistEntry.product_id == product_id))
    db.delete(row)
    db.commit()
    logger.info("Product %s deleted", product_id)
    return {"message": "Product deleted successfully", "id": product_id}


@app.get("/admin/inventory", response_model=List[InventoryItem])
def admin_inventory(db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    return db.scalars(select(ProductRow).order_by(ProductRow.id)).all()


@app.put("/admin/inventory/{product_id}", response_model=InventoryItem)
def admin_update_stock(product_id: int, payload: StockUpdate, db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    row = get_product_or_404(db, product_id)
    row.stock = payload.stock
    db.commit()
    db.refresh(row)
    return row


# Orders
@app.post("/orders", response_model=OrderCreated, status_code=201)
def create_order(
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    def send_confirmation(order: OrderRow):
        background_tasks.add_task(mailer.send_order_confirmation, load_store_settings(db), Order.model_validate(order))

    order = orders.place_order(db, payload, on_commit=send_confirmation)
    return {"id": order.id}


@app.get("/orders", response_model=List[Order])
def list_orders(db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    return orders.list_orders(db)


@app.get("/orders/{order_id}", response_model=Order)
def get_order(order_id: int, db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    return orders.get_order(db, order_id)


@app.patch("/orders/{order_id}/status", response_model=Order)
def change_order_status(
    order_id: int,
    payload: StatusChange,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    admin=Depends(get_current_admin),
):
    def send_update(order: OrderRow):
        background_tasks.add_task(mailer.send_status_update, load_store_settings(db), Order.model_validate(order))

    return orders.update_order_status(
        db,
        order_id,
        payload.status,
        enforce_forward=config.ENFORCE_FORWARD_STATUS,
        on_notify=send_update,
    )


# Wishlist, scoped by the client's session id
@app.get("/wishlist", response_model=List[int])
def get_wishlist(x_session_id: str = Header(default="default-session"), db: Session = Depends(get_db)):
    query = select(WishlistEntry.product_id).where(WishlistEntry.session_id == x_session_id).order_by(WishlistEntry.id)
    return db.scalars(query).all()


@app.post("/wishlist", status_code=201)
def add_to_wishlist(payload: WishlistAdd, x_session_id: str = Header(default="default-session"), db: Session = Depends(get_db)):
    get_product_or_404(db, payload.product_id)
    existing = db.scalar(
        select(WishlistEntry).where(
            WishlistEntry.session_id == x_session_id, WishlistEntry.product_id == payload.product_id
        )
    )
    if existing is None:
        db.add(WishlistEntry(product_id=payload.product_id, session_id=x_session_id))
        db.commit()
    return {"message": "Added to wishlist", "productId": payload.product_id}


@app.delete("/wishlist/{product_id}")
def remove_from_wishlist(product_id: int, x_session_id: str = Header(default="default-session"), db: Session = Depends(get_db)):
    db.execute(
        delete(WishlistEntry).where(
            WishlistEntry.session_id == x_session_id, WishlistEntry.product_id == product_id
        )
    )
    db.commit()
    return {"message": "Removed from wishlist", "productId": product_id}


# Settings
@app.get("/admin/settings", response_model=StoreSettings)
def get_settings(db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    return load_store_settings(db)


@app.put("/admin/settings", response_model=StoreSettings)
def update_settings(payload: StoreSettingsUpdate, db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    return save_store_settings(db, payload)


# Dashboard
@app.get("/admin/analytics", response_model=Analytics)
def analytics(db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    revenue = db.scalar(select(func.coalesce(func.sum(OrderRow.total), 0)))
    return {
        "totalProducts": db.scalar(select(func.count(ProductRow.id))),
        "totalOrders": db.scalar(select(func.count(OrderRow.id))),
        "totalRevenue": Decimal(str(revenue)).quantize(orders.CENTS),
        "ordersByStatus": orders.order_counts_by_status(db),
    }


@app.get("/admin/orders/export")
def admin_export_orders(db: Session = Depends(get_db), admin=Depends(get_current_admin)):
    out = StringIO()
    writer = csv.writer(out)
    writer.writerow(["order_id", "status", "total", "customer_email", "created_at", "item_count"])
    for it in orders.list_orders(db):
        count = sum(item["quantity"] for item in it.items)
        writer.writerow([it.id, it.status, it.total, it.customer_email, it.created_at.isoformat(), count])
    return {"csv": out.getvalue()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
