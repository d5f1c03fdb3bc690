import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import cart
import catalog
import identity
import orders
import wishlist
from auth import create_access_token, decode_access_token
from config import Settings, configure_logging
from database import Database
from errors import EmailDeliveryError, Forbidden, Internal, NotFound, ShopError, Unauthorized
from models import ROLE_ADMIN
from notifications import Mailer, build_password_reset_email, mailer_from_settings
from schemas import (
    CartAddRequest,
    CartQuantityUpdate,
    CategoryIn,
    CategoryUpdate,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    OrderIn,
    OrderStatusUpdate,
    ProductIn,
    ProductUpdate,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    UserCreate,
    UserOut,
    UserSummary,
    UserUpdate,
    WishlistAdd,
)
from seed import seed_sample_data

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If your email is registered, you will receive a password reset link"

bearer = HTTPBearer(auto_error=False)

health = APIRouter()
api = APIRouter(prefix="/api")


# ---------------------- Helpers ----------------------

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UserOut:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Not authorized, no token")
    payload = decode_access_token(credentials.credentials, settings)
    user = identity.find_by_id(db, payload["id"])
    if user is None:
        raise Unauthorized("Not authorized, user not found")
    return user


def require_admin(user: UserOut = Depends(get_current_user)) -> UserOut:
    if user.role != ROLE_ADMIN:
        raise Forbidden()
    return user


def auth_payload(user: UserOut, settings: Settings) -> Dict[str, Any]:
    return {
        "token": create_access_token(user, settings),
        "user": UserSummary.model_validate(user.model_dump()),
    }


def require_product(db: Database, product_id: int):
    product = catalog.find_product(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    return product


# ---------------------- Root & Health ----------------------

@health.get("/")
def read_root():
    return {"message": "FreshMart FastAPI Backend Running"}


@health.get("/test")
def test_database(db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": db.url.render_as_string(hide_password=True),
        "database_backend": db.url.get_backend_name(),
        "connection_status": "Not Connected",
        "tables": [],
    }
    try:
        response["tables"] = db.table_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.exception("Health check could not reach the database")
        detail = str(e)[:80] if settings.is_development else "unavailable"
        response["database"] = f"⚠️ Connected but Error: {detail}"
    return response


# ---------------------- Auth ----------------------

@api.post("/auth/register", status_code=201)
def register(body: RegisterRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = identity.create(
        db, body.full_name, body.email, body.password, bcrypt_rounds=settings.bcrypt_rounds
    )
    return {"success": True, "message": "User registered successfully", **auth_payload(user, settings)}


@api.post("/auth/login")
def login(body: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = identity.authenticate(db, body.email, body.password)
    return {"success": True, "message": "Login successful", **auth_payload(user, settings)}


@api.get("/auth/me")
def current_user(user: UserOut = Depends(get_current_user)):
    return {"success": True, "user": user}


@api.post("/auth/forgot-password")
def forgot_password(
    body: ForgotPasswordRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    mailer: Mailer = Depends(get_mailer),
):
    try:
        token, user = identity.generate_password_reset_token(
            db, body.email, settings.password_reset_expire_minutes
        )
    except NotFound:
        # same answer whether or not the address is registered
        return {"success": True, "message": FORGOT_PASSWORD_MESSAGE}

    try:
        mailer.send(build_password_reset_email(settings, token, user.full_name), user.email)
    except EmailDeliveryError:
        logger.warning("Reset email for user %s was not delivered; token withdrawn", user.id)
        identity.clear_password_reset_token(db, user.id)
    return {"success": True, "message": FORGOT_PASSWORD_MESSAGE}


@api.post("/auth/reset-password/{token}")
def reset_password(
    token: str,
    body: ResetPasswordRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    identity.reset_password(db, token, body.password, settings.bcrypt_rounds)
    return {"success": True, "message": "Password reset successful"}


@api.post("/auth/change-password")
@api.put("/users/change-password")
def change_password(
    body: ChangePasswordRequest,
    user: UserOut = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    identity.change_password(db, user.id, body.current_password, body.new_password, settings.bcrypt_rounds)
    return {"success": True, "message": "Password changed successfully"}


# ---------------------- Products ----------------------

@api.get("/products")
@api.get("/admin/products", dependencies=[Depends(require_admin)])
def list_products(
    category: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort: str = Query("id"),
    order: str = Query("asc"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    filters = {"category": category, "search": search, "min_price": min_price, "max_price": max_price}
    result = catalog.list_products(db, filters, sort, order, page, limit)
    return {"success": True, **result.model_dump()}


@api.get("/products/{product_id}")
@api.get("/admin/products/{product_id}", dependencies=[Depends(require_admin)])
def get_product(product_id: int, db: Database = Depends(get_db)):
    product = require_product(db, product_id)
    related = catalog.related_products(db, product.category_id, product.id)
    return {"success": True, "product": product, "related_products": related}


@api.post("/products", status_code=201, dependencies=[Depends(require_admin)])
@api.post("/admin/products", status_code=201, dependencies=[Depends(require_admin)])
def create_product(body: ProductIn, db: Database = Depends(get_db)):
    product = catalog.create_product(db, body.model_dump())
    return {"success": True, "message": "Product created successfully", "product": product}


@api.put("/products/{product_id}", dependencies=[Depends(require_admin)])
@api.put("/admin/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: int, body: ProductUpdate, db: Database = Depends(get_db)):
    product = catalog.update_product(db, product_id, body.model_dump(exclude_unset=True))
    return {"success": True, "message": "Product updated successfully", "product": product}


@api.delete("/products/{product_id}", dependencies=[Depends(require_admin)])
@api.delete("/admin/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: int, db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"success": True, "message": "Product deleted successfully"}


# ---------------------- Categories ----------------------

@api.get("/categories")
@api.get("/admin/categories", dependencies=[Depends(require_admin)])
def list_categories(db: Database = Depends(get_db)):
    categories = catalog.list_categories(db)
    return {"success": True, "count": len(categories), "categories": categories}


@api.get("/categories/{category_id}")
@api.get("/admin/categories/{category_id}", dependencies=[Depends(require_admin)])
def get_category(category_id: int, db: Database = Depends(get_db)):
    category = catalog.find_category(db, category_id)
    if category is None:
        raise NotFound("Category not found")
    return {"success": True, "category": category, "products": catalog.category_products(db, category_id)}


@api.post("/categories", status_code=201, dependencies=[Depends(require_admin)])
@api.post("/admin/categories", status_code=201, dependencies=[Depends(require_admin)])
def create_category(body: CategoryIn, db: Database = Depends(get_db)):
    category = catalog.create_category(db, body.model_dump())
    return {"success": True, "message": "Category created successfully", "category": category}


@api.put("/categories/{category_id}", dependencies=[Depends(require_admin)])
@api.put("/admin/categories/{category_id}", dependencies=[Depends(require_admin)])
def update_category(category_id: int, body: CategoryUpdate, db: Database = Depends(get_db)):
    category = catalog.update_category(db, category_id, body.model_dump(exclude_unset=True))
    return {"success": True, "message": "Category updated successfully", "category": category}


@api.delete("/categories/{category_id}", dependencies=[Depends(require_admin)])
@api.delete("/admin/categories/{category_id}", dependencies=[Depends(require_admin)])
def delete_category(category_id: int, db: Database = Depends(get_db)):
    catalog.delete_category(db, category_id)
    return {"success": True, "message": "Category deleted successfully"}


# ---------------------- Cart ----------------------

@api.get("/cart")
def get_cart(user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "cart": cart.get_or_create(db, user.id)}


@api.post("/cart/add")
def add_to_cart(body: CartAddRequest, user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    require_product(db, body.product_id)
    view = cart.add_item(db, user.id, body.product_id, body.quantity)
    return {"success": True, "message": "Item added to cart", "cart": view}


@api.put("/cart/item/{item_id}")
def update_cart_item(
    item_id: int,
    body: CartQuantityUpdate,
    user: UserOut = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    view = cart.update_item_quantity(db, user.id, item_id, body.quantity)
    return {"success": True, "message": "Cart item updated", "cart": view}


@api.delete("/cart/item/{item_id}")
def remove_cart_item(item_id: int, user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    view = cart.remove_item(db, user.id, item_id)
    return {"success": True, "message": "Item removed from cart", "cart": view}


@api.delete("/cart/clear")
def clear_cart(user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "message": "Cart cleared", "cart": cart.clear(db, user.id)}


# ---------------------- Orders ----------------------

@api.post("/orders", status_code=201)
def create_order(body: OrderIn, user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    order = orders.create_order(db, user.id, body.shipping_address, body.payment_method, body.items)
    return {"success": True, "message": "Order created successfully", "order": order}


@api.get("/orders/my-orders")
def my_orders(user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    result = orders.get_by_user_id(db, user.id)
    return {"success": True, "count": len(result), "orders": result}


@api.get("/orders", dependencies=[Depends(require_admin)])
@api.get("/admin/orders", dependencies=[Depends(require_admin)])
def list_orders(db: Database = Depends(get_db)):
    result = orders.get_all(db)
    return {"success": True, "count": len(result), "orders": result}


@api.get("/orders/{order_id}")
def get_order(order_id: int, user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    owner = None if user.role == ROLE_ADMIN else user.id
    order = orders.find_by_id(db, order_id, owner)
    if order is None:
        raise NotFound("Order not found")
    return {"success": True, "order": order}


@api.get("/admin/orders/{order_id}", dependencies=[Depends(require_admin)])
def admin_get_order(order_id: int, db: Database = Depends(get_db)):
    order = orders.find_by_id(db, order_id)
    if order is None:
        raise NotFound("Order not found")
    return {"success": True, "order": order}


@api.put("/orders/{order_id}/cancel")
def cancel_order(order_id: int, user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    order = orders.cancel_order(db, order_id, user.id)
    return {"success": True, "message": "Order cancelled successfully", "order": order}


@api.put("/orders/{order_id}/status", dependencies=[Depends(require_admin)])
@api.put("/admin/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: int, body: OrderStatusUpdate, db: Database = Depends(get_db)):
    order = orders.update_status(db, order_id, body.status, body.payment_status)
    return {"success": True, "message": "Order status updated successfully", "order": order}


# ---------------------- Users ----------------------

@api.get("/users/profile")
def get_profile(user: UserOut = Depends(get_current_user)):
    return {"success": True, "user": user}


@api.put("/users/profile")
def update_profile(body: ProfileUpdate, user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    updated = identity.update_profile(db, user.id, body.model_dump(exclude_unset=True))
    return {"success": True, "message": "Profile updated successfully", "user": updated}


@api.get("/users/wishlist")
def get_wishlist(user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    items = wishlist.get_wishlist(db, user.id)
    return {"success": True, "count": len(items), "wishlist": items}


@api.post("/users/wishlist", status_code=201)
def add_to_wishlist(body: WishlistAdd, user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    require_product(db, body.product_id)
    items = wishlist.add_item(db, user.id, body.product_id)
    return {"success": True, "message": "Product added to wishlist", "wishlist": items}


@api.delete("/users/wishlist/{entry_id}")
def remove_from_wishlist(entry_id: int, user: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    items = wishlist.remove_item(db, user.id, entry_id)
    return {"success": True, "message": "Product removed from wishlist", "wishlist": items}


# ---------------------- Admin ----------------------

@api.get("/admin/dashboard", dependencies=[Depends(require_admin)])
def dashboard(db: Database = Depends(get_db)):
    return {"success": True, "stats": orders.dashboard_stats(db)}


@api.get("/admin/users", dependencies=[Depends(require_admin)])
def list_users(db: Database = Depends(get_db)):
    users = identity.find_all(db)
    return {"success": True, "count": len(users), "users": users}


@api.get("/admin/users/{user_id}", dependencies=[Depends(require_admin)])
def get_user(user_id: int, db: Database = Depends(get_db)):
    user = identity.find_by_id(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return {"success": True, "user": user}


@api.post("/admin/users", status_code=201, dependencies=[Depends(require_admin)])
def create_user(body: UserCreate, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    data = body.model_dump(exclude={"full_name", "email", "password", "role"})
    user = identity.create(
        db, body.full_name, body.email, body.password, body.role, settings.bcrypt_rounds, **data
    )
    return {"success": True, "message": "User created successfully", "user": user}


@api.put("/admin/users/{user_id}", dependencies=[Depends(require_admin)])
def update_user(
    user_id: int,
    body: UserUpdate,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = identity.update_user(db, user_id, body.model_dump(exclude_unset=True), settings.bcrypt_rounds)
    return {"success": True, "message": "User updated successfully", "user": user}


@api.delete("/admin/users/{user_id}", dependencies=[Depends(require_admin)])
def delete_user(user_id: int, db: Database = Depends(get_db)):
    identity.delete_user(db, user_id)
    return {"success": True, "message": "User deleted successfully"}


# ---------------------- Errors ----------------------

def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Invalid request"
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
        return JSONResponse(status_code=400, content={"success": False, "message": message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        settings: Settings = request.app.state.settings
        error = Internal(str(exc) if settings.is_development else None)
        return JSONResponse(status_code=error.status_code, content={"success": False, "message": error.message})


# ---------------------- App ----------------------

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)
    database = database or Database(settings.database_url, settings.statement_timeout, settings.db_echo)
    mailer = mailer or mailer_from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        if settings.seed_sample_data:
            seed_sample_data(database, settings)
        logger.info("FreshMart API ready (%s)", settings.environment)
        yield
        database.dispose()

    app = FastAPI(title="FreshMart API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database
    app.state.mailer = mailer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(health)
    app.include_router(api)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
