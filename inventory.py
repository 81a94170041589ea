"""
Inventory store

Product reads and the conditional stock decrement. `quantity` is only ever
lowered through `conditional_decrement`, a single compare-and-decrement
update, so concurrent orders can never drive it below zero.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional

from bson import ObjectId
from pymongo.errors import PyMongoError

from database import PRODUCTS, Database, utcnow
from errors import ProductNotFound, StorageError, ValidationError
from schemas import ProductOut, ProductPage

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100


def ensure_object_id(id_str: str, field: str = "product") -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise ValidationError(f"Invalid ID format: {id_str}", field=field)
    return ObjectId(id_str)


@dataclass(frozen=True)
class StockDecrement:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class DecrementOutcome:
    product_id: str
    quantity: int
    applied: bool
    reason: Optional[str] = None


@dataclass
class ProductQuery:
    page: int = 1
    limit: int = 10
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    search: Optional[str] = None

    def __post_init__(self):
        if self.page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if self.limit < 1:
            raise ValidationError("limit must be at least 1", field="limit")
        self.limit = min(self.limit, MAX_PAGE_LIMIT)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def to_filter(self) -> dict:
        filt: dict = {}
        if self.category:
            filt["category"] = re.compile(f"^{re.escape(self.category)}$", re.IGNORECASE)
        if self.min_price is not None or self.max_price is not None:
            filt["price"] = {}
            if self.min_price is not None:
                filt["price"]["$gte"] = self.min_price
            if self.max_price is not None:
                filt["price"]["$lte"] = self.max_price
        if self.search:
            pattern = re.compile(re.escape(self.search.strip()), re.IGNORECASE)
            filt["$or"] = [{"name": pattern}, {"description": pattern}, {"category": pattern}]
        return filt


class InventoryStore:
    def __init__(self, database: Database):
        self.database = database
        self.products = database[PRODUCTS]

    def get_by_id(self, product_id: str) -> dict:
        _id = ensure_object_id(product_id)
        try:
            doc = self.database.run(self.products.find_one, {"_id": _id})
        except PyMongoError as e:
            raise StorageError(f"Could not read product {product_id}: {e}") from e
        if not doc:
            raise ProductNotFound(product_id)
        return doc

    def conditional_decrement(self, product_id: str, amount: int) -> DecrementOutcome:
        """Lower quantity by amount only if at least amount is in stock.

        Not retried: a lost acknowledgement could otherwise decrement twice.
        """
        _id = ensure_object_id(product_id)
        try:
            result = self.products.update_one(
                {"_id": _id, "quantity": {"$gte": amount}},
                {"$inc": {"quantity": -amount}, "$set": {"updated_at": utcnow()}},
            )
            if result.modified_count == 1:
                return DecrementOutcome(product_id, amount, applied=True)
            exists = self.products.find_one({"_id": _id}, {"_id": 1}) is not None
        except PyMongoError as e:
            raise StorageError(f"Could not decrement product {product_id}: {e}") from e

        reason = "insufficient_stock" if exists else "not_found"
        return DecrementOutcome(product_id, amount, applied=False, reason=reason)

    def batch_conditional_decrement(self, instructions: List[StockDecrement]) -> List[DecrementOutcome]:
        """Apply each decrement independently; one failure does not stop the rest."""
        outcomes = []
        for ins in instructions:
            try:
                outcome = self.conditional_decrement(ins.product_id, ins.quantity)
            except StorageError as e:
                logger.error("Stock decrement for %s failed: %s", ins.product_id, e)
                outcome = DecrementOutcome(ins.product_id, ins.quantity, applied=False, reason="storage_error")
            except Exception:
                # runs after the order is written: nothing may escape
                logger.exception("Stock decrement for %s failed unexpectedly", ins.product_id)
                outcome = DecrementOutcome(ins.product_id, ins.quantity, applied=False, reason="storage_error")
            outcomes.append(outcome)
        return outcomes

    # ----- Listing -----

    def list_products(self, query: ProductQuery) -> ProductPage:
        filt = query.to_filter()

        def fetch():
            cursor = (
                self.products.find(filt)
                .sort([("created_at", -1), ("_id", -1)])
                .skip(query.skip)
                .limit(query.limit)
            )
            return list(cursor), self.products.count_documents(filt)

        try:
            docs, total = self.database.run(fetch)
        except PyMongoError as e:
            raise StorageError(f"Could not list products: {e}") from e

        return ProductPage(
            products=[ProductOut.from_doc(d) for d in docs],
            page=query.page,
            limit=query.limit,
            total_pages=math.ceil(total / query.limit),
            total_products=total,
        )

    def list_for_farmer(self, farmer_id: str) -> List[ProductOut]:
        """Every product the farmer listed, newest first, unpaginated."""
        try:
            docs = self.database.run(
                lambda: list(self.products.find({"farmer_id": farmer_id}).sort([("created_at", -1), ("_id", -1)]))
            )
        except PyMongoError as e:
            raise StorageError(f"Could not read products for farmer {farmer_id}: {e}") from e
        return [ProductOut.from_doc(d) for d in docs]

    def product_ids_for_farmer(self, farmer_id: str) -> List[str]:
        try:
            docs = self.database.run(lambda: list(self.products.find({"farmer_id": farmer_id}, {"_id": 1})))
        except PyMongoError as e:
            raise StorageError(f"Could not read products for farmer {farmer_id}: {e}") from e
        return [str(d["_id"]) for d in docs]
