"""
Order placement and payment status.

place_order() turns the caller's cart into an order. Validation runs first
and touches nothing. After that the steps are separate store writes with no
transaction around them: stock is deducted line by line, then the order is
inserted, then the payment branch runs, then the cart is deleted. A failure
part way through leaves the earlier writes in place.
"""

import logging
import os
import shutil
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

from carts import find_cart, resolve_user
from config import Settings
from database import CARTS, ORDERS, PRODUCTS, USERS, parse_object_id
from errors import Internal, InvalidArgument, InvalidState, NotFound
from notifications import (
    Notifier,
    crypto_payment_received_email,
    order_confirmation_email,
    payment_status_email,
)
from schemas import CartItem, Order, PaymentMethod, PaymentStatus, to_document
from security import Identity

logger = logging.getLogger(__name__)

DELIVERY_DAYS = 10  # roughly 7 working days
DELIVERY_DATE_FORMAT = "%Y-%m-%d"
ORDER_CREATED_MESSAGE = "Order created successfully. It will take 7 working days to arrive at your provided address."


def parse_payment_method(raw: Any) -> PaymentMethod:
    if raw is not None and not isinstance(raw, str):
        raise InvalidArgument("Invalid payment method")
    try:
        return PaymentMethod((raw or "").strip().lower())
    except ValueError:
        raise InvalidArgument("Invalid payment method")


def price_cart(db: Database, items: List[Dict[str, Any]]) -> float:
    """Check every line against the catalog and return the order total."""
    total_amount = 0.0
    for item in items:
        product = db[PRODUCTS].find_one({"_id": item["product_id"]})
        if not product:
            raise NotFound(f"Product with ID {item['product_id']} not found")
        if product.get("stock", 0) < item["quantity"]:
            raise InvalidState(f"Insufficient stock for product: {product.get('name')}")
        total_amount += product["price"] * item["quantity"]
    return total_amount


def deduct_stock(db: Database, items: List[Dict[str, Any]]):
    for item in items:
        result = db[PRODUCTS].update_one(
            {"_id": item["product_id"], "stock": {"$gte": item["quantity"]}},
            {"$inc": {"stock": -item["quantity"]}},
        )
        if result.matched_count == 0:
            # Stock changed since pricing; lines already deducted stay deducted
            logger.warning("Stock guard missed for product %s during deduction", item["product_id"])
            raise InvalidState(f"Insufficient stock for product: {item['product_id']}")


def store_payment_proof(upload_root: str, user_id: ObjectId, order_id: ObjectId, proof) -> str:
    """Copy an uploaded proof to <upload_root>/<user_id>/<order_id>_<filename>."""
    upload_dir = os.path.join(upload_root, str(user_id))
    filename = f"{order_id}_{os.path.basename(proof.filename)}"
    file_path = os.path.join(upload_dir, filename)
    try:
        os.makedirs(upload_dir, exist_ok=True)
        with open(file_path, "wb") as dst:
            shutil.copyfileobj(proof.file, dst)
    except OSError as e:
        logger.error("Failed to store payment proof for order %s: %s", order_id, e)
        if os.path.exists(file_path):
            os.remove(file_path)
        raise Internal("Failed to save file")
    return file_path


def place_order(
    db: Database,
    identity: Identity,
    raw_payment_method: Optional[str],
    proof,
    settings: Settings,
    notifier: Notifier,
) -> Dict[str, Any]:
    user = resolve_user(db, identity)
    cart = find_cart(db, user["_id"])
    items = cart.get("items", [])
    if not items:
        raise InvalidState("Cart is empty")
    payment_method = parse_payment_method(raw_payment_method)
    total_amount = price_cart(db, items)

    deduct_stock(db, items)

    delivery_date = (datetime.now(timezone.utc) + timedelta(days=DELIVERY_DAYS)).strftime(DELIVERY_DATE_FORMAT)
    order = Order(
        user_id=user["_id"],
        items=[CartItem(product_id=it["product_id"], quantity=it["quantity"]) for it in items],
        total_amount=total_amount,
        payment_method=payment_method,
        delivery_date=delivery_date,
    )
    order_id = db[ORDERS].insert_one(to_document(order)).inserted_id
    logger.info("Order %s placed by %s: %.2f via %s", order_id, identity.email, total_amount, payment_method.value)

    if payment_method is PaymentMethod.CRYPTO:
        if proof is None or not getattr(proof, "filename", None):
            logger.warning("Crypto order %s has no payment proof; order and stock left in place", order_id)
            raise InvalidArgument("Failed to retrieve file")
        file_path = store_payment_proof(settings.UPLOAD_ROOT, user["_id"], order_id, proof)
        db[ORDERS].update_one({"_id": order_id}, {"$set": {"crypto_proof": file_path}})
        notifier.dispatch(crypto_payment_received_email(user["email"], user.get("name", ""), str(order_id)))
    else:
        # No gateway integration: card payments are accepted as-is
        db[ORDERS].update_one({"_id": order_id}, {"$set": {"payment_status": PaymentStatus.COMPLETED.value}})
        notifier.dispatch(
            order_confirmation_email(
                user["email"], user.get("name", ""), str(order_id), delivery_date, total_amount, payment_method.value
            )
        )

    db[CARTS].delete_one({"user_id": user["_id"]})

    return {
        "order_id": str(order_id),
        "total_amount": total_amount,
        "delivery_date": delivery_date,
        "message": ORDER_CREATED_MESSAGE,
    }


def list_orders(db: Database, identity: Identity) -> List[Dict[str, Any]]:
    user = resolve_user(db, identity)
    return list(db[ORDERS].find({"user_id": user["_id"]}))


def parse_payment_status(raw: Optional[str]) -> PaymentStatus:
    if raw not in (PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value):
        raise InvalidArgument("Invalid payment status")
    return PaymentStatus(raw)


def _apply_payment_status(db: Database, order_id: ObjectId, status: PaymentStatus) -> Optional[Dict[str, Any]]:
    result = db[ORDERS].update_one({"_id": order_id}, {"$set": {"payment_status": status.value}})
    if result.matched_count == 0:
        raise NotFound("Order not found")
    order = db[ORDERS].find_one({"_id": order_id})
    return db[USERS].find_one({"_id": order["user_id"]}) if order else None


async def update_payment_status(db: Database, order_id: str, raw_status: Optional[str], notifier: Notifier):
    """Admin-only; callers are expected to have checked the role already."""
    order_oid = parse_object_id(order_id, "order ID")
    status = parse_payment_status(raw_status)

    owner = await run_in_threadpool(_apply_payment_status, db, order_oid, status)
    logger.info("Order %s payment status set to %s", order_oid, status.value)

    if owner is None:
        logger.warning("Order %s has no owning user; status email not sent", order_oid)
        return
    await notifier.send_now(payment_status_email(owner["email"], owner.get("name", ""), str(order_oid), status.value))
