"""
Order placement, retrieval and cancellation.

Stock is reserved with one conditional decrement per line ("only while
stock >= quantity"), evaluated atomically by MongoDB, so the counter never
goes negative even when two checkouts race. Decrements already applied are
released again if a later line or the order insert fails.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

import config
from database import create_document, get_db, to_object_id, utcnow
from errors import AuthorizationError, NotFoundError, ValidationError
from responses import envelope
from schemas import Order, OrderItem, PaymentMethod, ShippingAddress
from security import Principal, get_principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderItemIn(BaseModel):
    product: Optional[str] = None
    quantity: Optional[int] = None


class OrderCreate(BaseModel):
    items: Optional[List[OrderItemIn]] = None
    shippingAddress: Optional[ShippingAddress] = None
    paymentMethod: Optional[PaymentMethod] = None


# ---------------------- Helpers ----------------------

def _product_missing(product_id) -> NotFoundError:
    return NotFoundError(f"Product with ID {product_id} does not exist.")


def _insufficient_stock(product: dict) -> ValidationError:
    return ValidationError(
        f'Insufficient stock for product "{product["name"]}". '
        f'Only {product["stock"]} units are available.'
    )


def _find_order(db, order_id) -> dict:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFoundError("Order not found")
    return order


def _check_access(order: dict, principal: Principal, action: str) -> None:
    if str(order["user"]) != principal.id and not principal.is_admin:
        raise AuthorizationError(f"You are not authorized to {action} this order.")


def _validate_items(db, items: List[OrderItemIn]):
    """Check every line against current stock; nothing is written here."""
    lines = []
    requested = {}
    for item in items:
        if not item.product or not item.quantity or item.quantity < 1:
            raise ValidationError("Each item must have a valid product ID and quantity.")
        oid = to_object_id(item.product)
        product = db["product"].find_one({"_id": oid}) if oid else None
        if not product:
            raise _product_missing(item.product)
        # the same product may appear on several lines
        requested[oid] = requested.get(oid, 0) + item.quantity
        if product["stock"] < requested[oid]:
            raise _insufficient_stock(product)
        lines.append((oid, item.quantity))
    return lines


def _release_stock(db, reserved) -> None:
    for oid, quantity in reversed(reserved):
        try:
            db["product"].update_one(
                {"_id": oid},
                {"$inc": {"stock": quantity}, "$set": {"updatedAt": utcnow()}},
            )
            logger.warning("Released %d unit(s) of product %s", quantity, oid)
        except PyMongoError:
            logger.exception("Could not release %d unit(s) of product %s", quantity, oid)


def _reserve_stock(db, lines):
    """Decrement stock line by line; returns (snapshot items, total, reserved)."""
    reserved = []
    items = []
    total = 0.0
    try:
        for oid, quantity in lines:
            product = db["product"].find_one_and_update(
                {"_id": oid, "stock": {"$gte": quantity}},
                {"$inc": {"stock": -quantity}, "$set": {"updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
            if product is None:
                current = db["product"].find_one({"_id": oid})
                if current is None:
                    raise _product_missing(oid)
                raise _insufficient_stock(current)
            reserved.append((oid, quantity))
            price = float(product["price"])
            total += price * quantity
            items.append(OrderItem(product=oid, quantity=quantity, price=price))
    except Exception:
        if reserved:
            logger.warning("Stock reservation failed after %d line(s), rolling back", len(reserved))
        _release_stock(db, reserved)
        raise
    return items, round(total, 2), reserved


def _populate_items(db, orders: List[dict]) -> List[dict]:
    """Replace each line's product id with {_id, name, price}; None when the product is gone."""
    ids = list({item["product"] for order in orders for item in order.get("items", [])})
    products = {
        p["_id"]: p
        for p in db["product"].find({"_id": {"$in": ids}}, {"name": 1, "price": 1})
    }
    for order in orders:
        for item in order.get("items", []):
            item["product"] = products.get(item["product"])
    return orders


def _restore_stock(db, items: List[dict]) -> List:
    unrestored = []
    for item in items:
        res = db["product"].update_one(
            {"_id": item["product"]},
            {"$inc": {"stock": item["quantity"]}, "$set": {"updatedAt": utcnow()}},
        )
        if res.matched_count == 0:
            logger.warning("Product %s no longer exists, %d unit(s) not restored", item["product"], item["quantity"])
            unrestored.append(item["product"])
    return unrestored


# ---------------------- Workflow ----------------------

def place_order(db, principal: Principal, payload: OrderCreate) -> dict:
    if not payload.items:
        raise ValidationError("Order must include at least one product item.")
    if payload.shippingAddress is None:
        raise ValidationError("Shipping address is invalid or missing.")
    if not payload.paymentMethod:
        raise ValidationError("Payment method is required.")

    lines = _validate_items(db, payload.items)
    items, total, reserved = _reserve_stock(db, lines)

    try:
        order = Order(
            user=to_object_id(principal.id),
            items=items,
            totalAmount=total,
            shippingAddress=payload.shippingAddress,
            paymentMethod=payload.paymentMethod,
        )
        doc = create_document(db, "order", order.model_dump())
    except Exception:
        logger.exception("Could not store order for user %s, releasing stock", principal.id)
        _release_stock(db, reserved)
        raise

    logger.info("Order %s placed by user %s: %d line(s), total %.2f",
                doc["_id"], principal.id, len(items), total)
    return doc


def list_orders(db, principal: Principal) -> List[dict]:
    orders = list(db["order"].find({"user": to_object_id(principal.id)}).sort("createdAt", -1))
    if not orders and config.EMPTY_ORDERS_NOT_FOUND:
        raise NotFoundError("No orders found")
    return _populate_items(db, orders)


def get_order(db, principal: Principal, order_id: str) -> dict:
    order = _find_order(db, order_id)
    _check_access(order, principal, "view")
    return _populate_items(db, [order])[0]


def cancel_order(db, principal: Principal, order_id: str) -> dict:
    order = _find_order(db, order_id)
    _check_access(order, principal, "cancel")
    if order.get("status") != "pending":
        raise ValidationError("Only pending orders can be canceled.")

    # claim the transition first so a concurrent cancel cannot restore stock twice
    cancelled = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": "pending"},
        {"$set": {"status": "cancelled", "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if cancelled is None:
        raise ValidationError("Only pending orders can be canceled.")

    unrestored = _restore_stock(db, cancelled.get("items", []))
    if unrestored:
        cancelled = db["order"].find_one_and_update(
            {"_id": order["_id"]},
            {"$set": {"unrestoredItems": unrestored}},
            return_document=ReturnDocument.AFTER,
        )

    logger.info("Order %s cancelled by user %s", order["_id"], principal.id)
    return cancelled


# ---------------------- Routes ----------------------

@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderCreate, principal: Principal = Depends(get_principal), db=Depends(get_db)):
    order = place_order(db, principal, payload)
    return envelope(order, "Order placed successfully! Thank you for shopping with us.")


@router.get("")
def get_orders(principal: Principal = Depends(get_principal), db=Depends(get_db)):
    return envelope(list_orders(db, principal), "Orders retrieved successfully.")


@router.get("/{order_id}")
def get_order_by_id(order_id: str, principal: Principal = Depends(get_principal), db=Depends(get_db)):
    return envelope(get_order(db, principal, order_id), "Order details retrieved successfully.")


@router.put("/{order_id}/cancel")
def cancel_order_by_id(order_id: str, principal: Principal = Depends(get_principal), db=Depends(get_db)):
    order = cancel_order(db, principal, order_id)
    return envelope(order, "Order has been successfully canceled and stock restored.")
