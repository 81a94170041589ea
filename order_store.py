"""
Order persistence

Orders are written once, then only their stock outcome (by the placement
coordinator) and their status (by an administrator) change.
"""
import logging
from typing import List, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import ORDERS, Database, utcnow
from errors import OrderNotFound, PersistenceFailure, StorageError, ValidationError
from inventory import DecrementOutcome, ensure_object_id
from schemas import Order, OrderStatus, StockFailure, StockStatus

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


class OrderStore:
    def __init__(self, database: Database):
        self.database = database
        self.orders = database[ORDERS]

    def insert(self, order: Order) -> dict:
        """Durably write a new order and return the stored document.

        The id is assigned before the first attempt, so a retried insert
        that hits a duplicate key means an earlier attempt already landed.
        """
        doc = order.model_dump()
        doc["_id"] = ObjectId()
        doc["created_at"] = doc["updated_at"] = utcnow()

        def attempt():
            try:
                self.database.create_document(ORDERS, doc)
            except DuplicateKeyError:
                logger.info("Order %s already written by an earlier attempt", doc["_id"])

        try:
            self.database.run(attempt)
        except PyMongoError as e:
            raise PersistenceFailure(f"Could not save order: {e}") from e
        return doc

    def record_stock_outcome(self, order_id: ObjectId, outcomes: List[DecrementOutcome]) -> dict:
        failures = [
            StockFailure(product_id=o.product_id, quantity=o.quantity, reason=o.reason or "unknown").model_dump()
            for o in outcomes
            if not o.applied
        ]
        stock_status = StockStatus.FAILED if failures else StockStatus.APPLIED
        update = {"$set": {"stock_status": stock_status.value, "stock_failures": failures, "updated_at": utcnow()}}
        try:
            doc = self.database.run(
                self.orders.find_one_and_update, {"_id": order_id}, update, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise StorageError(f"Could not record stock outcome for order {order_id}: {e}") from e
        if doc is None:
            raise OrderNotFound(str(order_id))
        return doc

    def get(self, order_id: str) -> dict:
        _id = ensure_object_id(order_id, field="order")
        doc = self._call(self.orders.find_one, {"_id": _id})
        if not doc:
            raise OrderNotFound(order_id)
        return doc

    def list_for_consumer(self, consumer_id: str) -> List[dict]:
        return self._find({"consumer_id": consumer_id})

    def list_containing_products(self, product_ids: List[str]) -> List[dict]:
        """Orders with at least one line for any of product_ids."""
        if not product_ids:
            return []
        return self._find({"items.product_id": {"$in": list(product_ids)}})

    def list_page(self, page: int, limit: int) -> Tuple[List[dict], int]:
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if limit < 1:
            raise ValidationError("limit must be at least 1", field="limit")

        def fetch():
            cursor = self.orders.find({}).sort(NEWEST_FIRST).skip((page - 1) * limit).limit(limit)
            return list(cursor), self.orders.count_documents({})

        return self._call(fetch)

    def update_status(self, order_id: str, status: OrderStatus) -> dict:
        _id = ensure_object_id(order_id, field="order")
        doc = self._call(
            self.orders.find_one_and_update,
            {"_id": _id},
            {"$set": {"status": OrderStatus(status).value, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise OrderNotFound(order_id)
        logger.info("Order %s status set to %s", order_id, OrderStatus(status).value)
        return doc

    # ----- Reconciliation -----

    def list_needing_reconciliation(self) -> List[dict]:
        return self._find({"stock_status": StockStatus.FAILED.value})

    def count_needing_reconciliation(self) -> int:
        return self._call(self.orders.count_documents, {"stock_status": StockStatus.FAILED.value})

    def resolve_reconciliation(self, order_id: str) -> dict:
        """Mark a failed stock outcome as corrected out of band."""
        _id = ensure_object_id(order_id, field="order")
        doc = self._call(
            self.orders.find_one_and_update,
            {"_id": _id, "stock_status": StockStatus.FAILED.value},
            {"$set": {"stock_status": StockStatus.RESOLVED.value, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self.get(order_id)
            raise ValidationError(
                f"Order {order_id} has stock status '{current.get('stock_status')}', nothing to reconcile",
                field="stockStatus",
            )
        logger.info("Order %s stock reconciliation resolved", order_id)
        return doc

    def _find(self, filt: dict) -> List[dict]:
        return self._call(lambda: list(self.orders.find(filt).sort(NEWEST_FIRST)))

    def _call(self, fn, *args, **kwargs):
        try:
            return self.database.run(fn, *args, **kwargs)
        except PyMongoError as e:
            raise StorageError(f"Order storage error: {e}") from e
