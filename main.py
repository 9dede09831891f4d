import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from starlette.concurrency import run_in_threadpool

import carts
import orders
from config import Settings, configure_logging, get_settings
from database import PRODUCTS, USERS, db as default_db, ensure_indexes, get_db, parse_object_id, serialize_doc, serialize_docs
from errors import Internal, InvalidArgument, NotFound, Unauthorized, setup_error_handlers
from notifications import Mailer, Notifier, get_mailer, get_notifier, verification_email
from schemas import Address, Product as ProductSchema, Role, User as UserSchema, to_document
from security import (
    Identity,
    create_access_token,
    decode_token,
    get_current_identity,
    hash_password,
    require_admin,
    verify_password,
)

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await run_in_threadpool(ensure_indexes, default_db)
    yield


app = FastAPI(title=get_settings().API_TITLE, version=get_settings().API_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_error_handlers(app)


# Request / response models
class RegisterInput(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=1)
    address: Optional[Address] = None


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    token: str


class MessageResponse(BaseModel):
    message: str


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)

    @field_validator("name", "price", "stock", mode="before")
    @classmethod
    def reject_null(cls, value):
        # Omit a field to leave it unchanged; only description may be cleared
        if value is None:
            raise ValueError("must not be null")
        return value


class CartItemInput(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)


class OrderSummary(BaseModel):
    order_id: str
    total_amount: float
    delivery_date: str
    message: str


class PaymentStatusUpdate(BaseModel):
    payment_status: Optional[str] = None


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(user)
    # Never send password hash or pending verification token
    user.pop("password", None)
    user.pop("verification_token", None)
    return user


# Routes
@app.get("/")
def read_root():
    return {"message": "Storefront API"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        response["database_name"] = db.name
        response["collections"] = db.list_collection_names()
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
@app.post("/register", response_model=MessageResponse, status_code=201)
async def register(
    payload: RegisterInput,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    mailer: Mailer = Depends(get_mailer),
):
    email = payload.email.lower()
    if await run_in_threadpool(db[USERS].count_documents, {"email": email}):
        raise InvalidArgument("User already exists")
    token = create_access_token(email, Role.USER.value, settings)
    user_model = UserSchema(
        name=payload.name,
        email=email,
        password=hash_password(payload.password),
        address=payload.address or Address(),
        role=Role.USER,
        is_verified=False,
        verification_token=token,
    )
    try:
        await run_in_threadpool(db[USERS].insert_one, to_document(user_model))
    except DuplicateKeyError:
        raise InvalidArgument("User already exists")
    logger.info("Registered user %s", email)

    # Unlike order notifications, a failed verification email fails the request
    if not await Notifier(mailer).send_now(verification_email(email, token, settings)):
        raise Internal("Error sending verification email")
    return MessageResponse(message="User registered successfully. Please check your email to verify your account.")


@app.get("/verify", response_model=MessageResponse)
def verify_email(token: Optional[str] = None, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    if not token:
        raise InvalidArgument("Verification token missing")
    try:
        decode_token(token, settings)
    except (JWTError, ValueError):
        raise InvalidArgument("Invalid token")
    user = db[USERS].find_one({"verification_token": token})
    if not user:
        raise InvalidArgument("User not found or already verified")
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"is_verified": True, "verification_token": None}})
    logger.info("Email verified for %s", user["email"])
    return MessageResponse(message="Email verified successfully. You can now log in.")


@app.post("/login", response_model=TokenResponse)
def login(payload: LoginInput, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db[USERS].find_one({"email": payload.email.lower()})
    if not user:
        raise Unauthorized("User not found")
    if not user.get("is_verified"):
        raise Unauthorized("Email not verified")
    if not verify_password(payload.password, user.get("password", "")):
        raise Unauthorized("Invalid password")
    return TokenResponse(token=create_access_token(user["email"], user.get("role", Role.USER.value), settings))


@app.get("/profile")
def profile(identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return public_user(carts.resolve_user(db, identity))


# Products
@app.get("/products")
def list_products(db: Database = Depends(get_db)):
    return serialize_docs(db[PRODUCTS].find({}))


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = db[PRODUCTS].find_one({"_id": parse_object_id(product_id, "product ID")})
    if not product:
        raise NotFound("Product not found")
    return serialize_doc(product)


@app.post("/products", status_code=201)
def create_product(data: ProductSchema, _: Identity = Depends(require_admin), db: Database = Depends(get_db)):
    res = db[PRODUCTS].insert_one(to_document(data))
    created = db[PRODUCTS].find_one({"_id": res.inserted_id})
    logger.info("Product %s created", res.inserted_id)
    return serialize_doc(created)


@app.put("/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, _: Identity = Depends(require_admin), db: Database = Depends(get_db)):
    obj_id = parse_object_id(product_id, "product ID")
    update_dict = data.model_dump(exclude_unset=True)
    if not update_dict:
        raise InvalidArgument("No fields to update")
    res = db[PRODUCTS].update_one({"_id": obj_id}, {"$set": update_dict})
    if res.matched_count == 0:
        raise NotFound("Product not found")
    return serialize_doc(db[PRODUCTS].find_one({"_id": obj_id}))


@app.delete("/products/{product_id}", response_model=MessageResponse)
def delete_product(product_id: str, _: Identity = Depends(require_admin), db: Database = Depends(get_db)):
    res = db[PRODUCTS].delete_one({"_id": parse_object_id(product_id, "product ID")})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    return MessageResponse(message="Product deleted")


# Cart
@app.post("/cart", response_model=MessageResponse)
def add_to_cart(item: CartItemInput, identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    carts.add_to_cart(db, identity, item.product_id, item.quantity)
    return MessageResponse(message="Item added to cart")


@app.get("/cart")
def get_cart(identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return serialize_doc(carts.get_cart(db, identity))


@app.delete("/cart", response_model=MessageResponse)
def remove_from_cart(product_id: str, identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    carts.remove_from_cart(db, identity, product_id)
    return MessageResponse(message="Item removed from cart")


# Orders
async def read_order_request(request: Request):
    """Return (payment_method, proof) from a JSON or multipart body; unreadable bodies yield (None, None)."""
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("multipart/form-data"):
            form = await request.form()
            proof = form.get("crypto_proof")
            method = form.get("payment_method")
            return (method if isinstance(method, str) else None), (proof if hasattr(proof, "file") else None)
        body = await request.json()
    except Exception as e:
        logger.info("Unreadable order request body: %s", e)
        return None, None
    if not isinstance(body, dict):
        return None, None
    return body.get("payment_method"), None


@app.post("/order", response_model=OrderSummary, status_code=201)
async def create_order(
    request: Request,
    identity: Identity = Depends(get_current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
):
    payment_method, proof = await read_order_request(request)
    return await run_in_threadpool(orders.place_order, db, identity, payment_method, proof, settings, notifier)


@app.get("/orders")
def get_orders(identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return serialize_docs(orders.list_orders(db, identity))


@app.put("/order/{order_id}", response_model=MessageResponse)
async def update_order_payment_status(
    order_id: str,
    payload: PaymentStatusUpdate,
    _: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    await orders.update_payment_status(db, order_id, payload.payment_status, notifier)
    return MessageResponse(message="Payment status updated successfully")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().PORT)
