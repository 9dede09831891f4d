import logging
from typing import Any, Dict

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import CARTS, PRODUCTS, USERS, parse_object_id
from errors import NotFound
from schemas import Cart, CartItem, to_document
from security import Identity

logger = logging.getLogger(__name__)


def resolve_user(db: Database, identity: Identity) -> Dict[str, Any]:
    user = db[USERS].find_one({"email": identity.email})
    if not user:
        raise NotFound("User not found")
    return user


def find_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    cart = db[CARTS].find_one({"user_id": user_id})
    if not cart:
        raise NotFound("Cart not found")
    return cart


def add_to_cart(db: Database, identity: Identity, product_id: str, quantity: int):
    product_oid = parse_object_id(product_id, "product ID")
    if not db[PRODUCTS].find_one({"_id": product_oid}, {"_id": 1}):
        raise NotFound("Product not found")
    user = resolve_user(db, identity)
    item = CartItem(product_id=product_oid, quantity=quantity)

    cart = db[CARTS].find_one({"user_id": user["_id"]})
    if not cart:
        try:
            db[CARTS].insert_one(to_document(Cart(user_id=user["_id"], items=[item])))
            logger.info("Created cart for %s", identity.email)
            return
        except DuplicateKeyError:
            # A concurrent request created it first; merge into that one
            cart = find_cart(db, user["_id"])

    items = cart.get("items", [])
    for existing in items:
        if existing["product_id"] == product_oid:
            existing["quantity"] = int(existing["quantity"]) + quantity
            break
    else:
        items.append(to_document(item))
    db[CARTS].update_one({"_id": cart["_id"]}, {"$set": {"items": items}})


def remove_from_cart(db: Database, identity: Identity, product_id: str):
    product_oid = parse_object_id(product_id, "product ID")
    user = resolve_user(db, identity)
    cart = find_cart(db, user["_id"])
    items = [it for it in cart.get("items", []) if it["product_id"] != product_oid]
    db[CARTS].update_one({"_id": cart["_id"]}, {"$set": {"items": items}})


def get_cart(db: Database, identity: Identity) -> Dict[str, Any]:
    user = resolve_user(db, identity)
    return find_cart(db, user["_id"])
