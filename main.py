import logging
import os
from contextlib import asynccontextmanager
from typing import Any, List, Literal, Optional, Union

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import admin
import catalog
import orders
import proximity
import reviews
import users
from auth import (
    FirebaseVerifier,
    IdentityVerifier,
    get_current_user,
    get_db,
    get_verifier,
    require_admin,
)
from database import COLLECTIONS, Database
from errors import AppError, Unauthenticated

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

_FROM_ENV = object()


def _default_verifier() -> Optional[IdentityVerifier]:
    try:
        return FirebaseVerifier()
    except (ValueError, OSError) as e:
        logger.warning("Firebase credentials unavailable, authenticated routes disabled: %s", e)
        return None


def ok(data=None, message: Optional[str] = None, **extra) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


# ============ Request models ==========
class Payload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class PartialPayload(Payload):
    @model_validator(mode="after")
    def _at_least_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self


MOBILE_PATTERN = r"^\+?[0-9]{8,15}$"


class RegisterRequest(Payload):
    full_name: str = Field(..., min_length=3, max_length=100)
    mobile_number: str = Field(..., pattern=MOBILE_PATTERN)
    id_token: str = Field(..., min_length=1)


class LoginRequest(Payload):
    id_token: str = Field(..., min_length=1)


class ProfileUpdate(PartialPayload):
    full_name: Optional[str] = Field(None, min_length=3, max_length=100)
    email: Optional[Union[EmailStr, Literal[""]]] = None
    image: Optional[str] = None
    mobile_number: Optional[str] = Field(None, pattern=MOBILE_PATTERN)
    type: Optional[Literal["user", "admin"]] = None


class CategoryPayload(Payload):
    name: str = Field(..., min_length=1)
    image: Optional[str] = None


class ProductCreate(Payload):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    discount_percent: Optional[int] = Field(None, ge=0, le=100)
    image: Optional[str] = None
    images: Optional[List[str]] = None
    is_featured: bool = False
    category_id: str
    restaurant_id: Optional[str] = None


class ProductUpdate(PartialPayload):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    discount_percent: Optional[int] = Field(None, ge=0, le=100)
    image: Optional[str] = None
    images: Optional[List[str]] = None
    is_featured: Optional[bool] = None
    category_id: Optional[str] = None
    restaurant_id: Optional[str] = None


class RestaurantCreate(Payload):
    name: str = Field(..., min_length=1, max_length=200)
    type: str = Field(..., min_length=1, max_length=100)
    location: str = Field(..., min_length=1, max_length=500)
    rating: float = Field(0, ge=0, le=5)
    image_url: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class RestaurantUpdate(PartialPayload):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[str] = Field(None, min_length=1, max_length=100)
    location: Optional[str] = Field(None, min_length=1, max_length=500)
    rating: Optional[float] = Field(None, ge=0, le=5)
    image_url: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class NearbyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # left untyped: bad coordinates fall back to the top-rated list instead of a 400
    user_lat: Any = Field(None, alias="userLat")
    user_lng: Any = Field(None, alias="userLng")
    radius_km: Any = Field(None, alias="radiusKM")


class CartLine(Payload):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Union[str, int] = Field(..., alias="productId")
    quantity: int = Field(..., ge=1)


class CreateOrderRequest(Payload):
    items: List[CartLine] = Field(..., min_length=1)
    location: Optional[str] = Field(None, max_length=500)


class UpdateOrderStatusRequest(Payload):
    status: str


class ReviewRequest(Payload):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


# ===================== Error envelope =====================
def _error(status_code: int, message: str, details: Optional[List[str]] = None) -> JSONResponse:
    content = {"success": False, "message": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return _error(exc.status_code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = []
        for err in exc.errors():
            field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            details.append(f"{field}: {err['msg']}" if field else err["msg"])
        return _error(400, "Validation error", details)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal Server Error")


# ===================== App =====================
def create_app(database: Any = _FROM_ENV, verifier: Any = _FROM_ENV) -> FastAPI:
    if database is _FROM_ENV:
        database = Database.from_env()
    if verifier is _FROM_ENV:
        verifier = _default_verifier()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.db is not None:
            try:
                app.state.db.ensure_indexes()
            except PyMongoError as e:
                logger.warning("Could not create indexes: %s", e)
        yield

    app = FastAPI(title="Buzzer Restaurant Ordering API", version="1.0.0", lifespan=lifespan)
    app.state.db = database
    app.state.verifier = verifier

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    # ===================== Public Endpoints =====================
    @app.get("/")
    def root():
        return {"message": "Buzzer Restaurant Ordering API running"}

    @app.get("/test")
    def test_database(request: Request):
        db = request.app.state.db
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": None,
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": []
        }
        try:
            if db is not None:
                response["database"] = "✅ Available"
                response["connection_status"] = "Connected"
                response["collections"] = db.db.list_collection_names()
            else:
                response["database"] = "⚠️  Available but not initialized"
        except PyMongoError as e:
            response["database"] = f"❌ Error: {str(e)[:80]}"
        response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
        response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
        return response

    @app.get("/schema")
    def get_schema():
        return {
            "collections": COLLECTIONS,
            "notes": "Each class in schemas.py maps to a MongoDB collection (lowercase)."
        }

    # ===================== Auth =====================
    def _verify(verifier: IdentityVerifier, token: str):
        try:
            return verifier.verify(token)
        except Unauthenticated:
            raise Unauthenticated("Invalid idToken")

    @app.post("/auth/register", status_code=201)
    def register(payload: RegisterRequest, db: Database = Depends(get_db),
                 verifier: IdentityVerifier = Depends(get_verifier)):
        identity = _verify(verifier, payload.id_token)
        user = users.register_user(db, identity, payload.full_name, payload.mobile_number)
        return ok(user, "User registered successfully")

    @app.post("/auth/login")
    def login(payload: LoginRequest, db: Database = Depends(get_db),
              verifier: IdentityVerifier = Depends(get_verifier)):
        identity = _verify(verifier, payload.id_token)
        return ok(users.login_user(db, identity), "Login successful")

    @app.get("/auth/profile")
    def get_profile(user: dict = Depends(get_current_user)):
        return ok(user, "Profile retrieved successfully")

    @app.patch("/auth/profile")
    def update_profile(payload: ProfileUpdate, user: dict = Depends(get_current_user),
                       db: Database = Depends(get_db)):
        updated = users.update_profile(db, user, payload.model_dump(exclude_unset=True))
        return ok(updated, "Profile updated successfully")

    # ===================== Categories =====================
    @app.get("/categories")
    def list_categories(db: Database = Depends(get_db)):
        return ok(catalog.list_categories(db))

    @app.get("/categories/{category_id}")
    def get_category(category_id: str, db: Database = Depends(get_db)):
        return ok(catalog.get_category(db, category_id))

    @app.post("/categories", status_code=201)
    def create_category(payload: CategoryPayload, db: Database = Depends(get_db),
                        _admin: dict = Depends(require_admin)):
        return ok(catalog.create_category(db, payload.model_dump()), "Category created")

    @app.put("/categories/{category_id}")
    def update_category(category_id: str, payload: CategoryPayload, db: Database = Depends(get_db),
                        _admin: dict = Depends(require_admin)):
        return ok(catalog.update_category(db, category_id, payload.model_dump()), "Category updated")

    @app.delete("/categories/{category_id}")
    def remove_category(category_id: str, db: Database = Depends(get_db),
                        _admin: dict = Depends(require_admin)):
        catalog.delete_category(db, category_id)
        return ok(message="Category deleted")

    # ===================== Products =====================
    @app.get("/products")
    def list_products(category_id: Optional[str] = None, restaurant_id: Optional[str] = None,
                      db: Database = Depends(get_db)):
        products = catalog.list_products(db, category_id=category_id, restaurant_id=restaurant_id)
        return ok(products, count=len(products))

    @app.get("/products/{product_id}")
    def get_product(product_id: str, db: Database = Depends(get_db)):
        return ok(catalog.get_product(db, product_id))

    @app.post("/products", status_code=201)
    def create_product(payload: ProductCreate, db: Database = Depends(get_db),
                       _admin: dict = Depends(require_admin)):
        return ok(catalog.create_product(db, payload.model_dump()), "Product created")

    @app.put("/products/{product_id}")
    def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db),
                       _admin: dict = Depends(require_admin)):
        product = catalog.update_product(db, product_id, payload.model_dump(exclude_unset=True))
        return ok(product, "Product updated")

    @app.delete("/products/{product_id}")
    def delete_product(product_id: str, db: Database = Depends(get_db),
                       _admin: dict = Depends(require_admin)):
        catalog.delete_product(db, product_id)
        return ok(message="Product deleted")

    # ===================== Restaurants =====================
    @app.get("/restaurants")
    def list_restaurants(db: Database = Depends(get_db)):
        return ok(catalog.list_restaurants(db), "Restaurants retrieved successfully")

    @app.post("/restaurants/nearby")
    def nearby_restaurants(payload: Optional[NearbyRequest] = None, db: Database = Depends(get_db)):
        payload = payload or NearbyRequest()
        found = proximity.nearby_restaurants(db, payload.user_lat, payload.user_lng, payload.radius_km)
        return ok(found, count=len(found))

    @app.get("/restaurants/{restaurant_id}")
    def get_restaurant(restaurant_id: str, db: Database = Depends(get_db)):
        return ok(catalog.get_restaurant(db, restaurant_id), "Restaurant retrieved successfully")

    @app.post("/restaurants", status_code=201)
    def create_restaurant(payload: RestaurantCreate, db: Database = Depends(get_db),
                          _admin: dict = Depends(require_admin)):
        return ok(catalog.create_restaurant(db, payload.model_dump()), "Restaurant created successfully")

    @app.patch("/restaurants/{restaurant_id}")
    def update_restaurant(restaurant_id: str, payload: RestaurantUpdate, db: Database = Depends(get_db),
                          _admin: dict = Depends(require_admin)):
        restaurant = catalog.update_restaurant(db, restaurant_id, payload.model_dump(exclude_unset=True))
        return ok(restaurant, "Restaurant updated successfully")

    @app.delete("/restaurants/{restaurant_id}")
    def delete_restaurant(restaurant_id: str, db: Database = Depends(get_db),
                          _admin: dict = Depends(require_admin)):
        catalog.delete_restaurant(db, restaurant_id)
        return ok(message="Restaurant deleted successfully")

    # ===================== Orders =====================
    @app.post("/orders", status_code=201)
    def create_order(payload: CreateOrderRequest, user: dict = Depends(get_current_user),
                     db: Database = Depends(get_db)):
        items = [line.model_dump() for line in payload.items]
        order = orders.create_order(db, user, items, payload.location)
        return ok(order, "Order created successfully")

    @app.get("/orders")
    def my_orders(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        found = orders.list_my_orders(db, user)
        return ok(found, "Orders retrieved successfully", count=len(found))

    # must stay above /orders/{order_id}
    @app.get("/orders/all")
    def all_orders(status: Optional[str] = None, _admin: dict = Depends(require_admin),
                   db: Database = Depends(get_db)):
        found = orders.list_all_orders(db, status)
        return ok(found, "All orders retrieved successfully", count=len(found))

    @app.get("/orders/{order_id}")
    def get_order(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        return ok(orders.get_order(db, user, order_id), "Order retrieved successfully")

    @app.patch("/orders/{order_id}")
    def update_order_status(order_id: str, payload: UpdateOrderStatusRequest,
                            user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        order = orders.update_order_status(db, user, order_id, payload.status)
        return ok(order, "Order status updated successfully")

    @app.delete("/orders/{order_id}")
    def delete_order(order_id: str, _admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
        orders.delete_order(db, order_id)
        return ok(message="Order deleted successfully")

    # ===================== Reviews =====================
    @app.get("/reviews/product/{product_id}")
    def product_reviews(product_id: str, db: Database = Depends(get_db)):
        return ok(reviews.list_product_reviews(db, product_id))

    @app.post("/reviews/{product_id}", status_code=201)
    def submit_review(product_id: str, payload: ReviewRequest, response: Response,
                      user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        review, created = reviews.submit_review(db, user, product_id, payload.rating, payload.comment)
        if not created:
            response.status_code = 200
            return ok(review, "Review updated successfully")
        return ok(review, "Review created successfully")

    @app.delete("/reviews/{review_id}")
    def delete_review(review_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        reviews.delete_review(db, user, review_id)
        return ok(message="Review deleted successfully")

    # ===================== Search & Admin =====================
    @app.get("/search/recommendations")
    def search_recommendations(q: Optional[str] = None, limit: int = 10, db: Database = Depends(get_db)):
        return ok(catalog.search_recommendations(db, q, limit))

    @app.get("/admin/stats")
    def dashboard_stats(_admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
        return ok(admin.dashboard_stats(db), "Dashboard statistics retrieved successfully")


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
