import logging
import math
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo import ReturnDocument

from database import get_db, get_documents, to_object_id, utcnow
from errors import NotFoundError, ValidationError
from responses import envelope
from schemas import Category, Product, ProductBase, Rating
from security import Principal, get_principal, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


class ProductCreate(BaseModel):
    products: Union[List[ProductBase], ProductBase]


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    price: Optional[float] = Field(None, gt=0)
    category: Optional[Category] = None
    stock: Optional[int] = None


class RatingIn(BaseModel):
    rating: Optional[float] = None
    review: Optional[str] = None


def _find_product(db, product_id) -> dict:
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise NotFoundError("Product not found")
    return product


def create_products(db, principal: Principal, payload: ProductCreate) -> List[dict]:
    entries = payload.products if isinstance(payload.products, list) else [payload.products]
    if not entries:
        raise ValidationError("Invalid input: 'products' must be an object or a non-empty array of product objects.")

    seen = set()
    errors = []
    for i, entry in enumerate(entries):
        if entry.name in seen:
            errors.append(f"Product at index {i} has a duplicate name within the request body.")
        seen.add(entry.name)
    if errors:
        raise ValidationError(f"Validation errors: {' '.join(errors)}")

    existing = list(db["product"].find({"name": {"$in": list(seen)}}, {"name": 1}))
    if existing:
        names = ", ".join(p["name"] for p in existing)
        raise ValidationError(
            f"Duplicate product names found in the database: {names}. Please use unique names."
        )

    now = utcnow()
    docs = []
    for entry in entries:
        product = Product(**entry.model_dump(), createdBy=to_object_id(principal.id))
        docs.append({**product.model_dump(), "createdAt": now, "updatedAt": now})
    result = db["product"].insert_many(docs)
    for doc, oid in zip(docs, result.inserted_ids):
        doc["_id"] = oid
    logger.info("User %s created %d product(s)", principal.id, len(docs))
    return docs


def update_product(db, product_id: str, payload: ProductUpdate) -> dict:
    product = _find_product(db, product_id)
    changes = payload.model_dump(exclude_none=True)
    if "stock" in changes and changes["stock"] < 0:
        raise ValidationError("Stock cannot be negative")
    if "name" in changes and changes["name"] != product["name"]:
        if db["product"].find_one({"name": changes["name"], "_id": {"$ne": product["_id"]}}):
            raise ValidationError(f"A product named {changes['name']} already exists.")
    if not changes:
        return product
    changes["updatedAt"] = utcnow()
    return db["product"].find_one_and_update(
        {"_id": product["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )


def delete_product(db, product_id: str) -> None:
    product = _find_product(db, product_id)
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted", product["_id"])


def add_rating(db, principal: Principal, product_id: str, payload: RatingIn) -> dict:
    """Add the caller's rating and recompute the average; one rating per user."""
    rating = payload.rating
    if rating is None or not math.isfinite(rating) or rating != int(rating) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be a number between 1 and 5")
    # an empty review is the same as no review
    if payload.review and len(payload.review.strip()) < 5:
        raise ValidationError("Review must be at least 5 characters long")

    product = _find_product(db, product_id)
    user_oid = to_object_id(principal.id)
    if any(r["user"] == user_oid for r in product.get("ratings", [])):
        raise ValidationError("You have already rated this product")

    entry = Rating(user=user_oid, rating=int(rating), review=payload.review or None)
    updated = db["product"].find_one_and_update(
        {"_id": product["_id"], "ratings.user": {"$ne": user_oid}},
        {"$push": {"ratings": entry.model_dump()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ValidationError("You have already rated this product")

    ratings = updated["ratings"]
    average = sum(r["rating"] for r in ratings) / len(ratings)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"averageRating": average}})
    return {"productId": product["_id"], "ratings": ratings, "averageRating": average}


# ---------------------- Routes ----------------------

@router.get("")
def list_products(db=Depends(get_db)):
    return envelope(get_documents(db, "product"), "All products retrieved successfully")


@router.get("/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return envelope(_find_product(db, product_id), "Product retrieved successfully")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductCreate, principal: Principal = Depends(require_admin), db=Depends(get_db)):
    created = create_products(db, principal, payload)
    return envelope(created, f"{len(created)} product(s) created successfully!")


@router.put("/{product_id}", dependencies=[Depends(require_admin)])
def update_product_by_id(product_id: str, payload: ProductUpdate, db=Depends(get_db)):
    return envelope(update_product(db, product_id, payload), "Product updated successfully")


@router.delete("/{product_id}", dependencies=[Depends(require_admin)])
def delete_product_by_id(product_id: str, db=Depends(get_db)):
    delete_product(db, product_id)
    return envelope(message="Product deleted successfully")


@router.post("/{product_id}/ratings", status_code=status.HTTP_201_CREATED)
def rate_product(product_id: str, payload: RatingIn, principal: Principal = Depends(get_principal),
                 db=Depends(get_db)):
    return envelope(add_rating(db, principal, product_id, payload), "Product rating added successfully")
