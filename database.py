"""
MongoDB access

One `Database` wraps one MongoClient. It is opened when the app starts and
closed when it stops; stores receive it through their constructors.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import AutoReconnect, PyMongoError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import Settings

logger = logging.getLogger(__name__)

PRODUCTS = "product"
ORDERS = "order"

# Errors worth another attempt: the driver lost the connection or could not select a server.
TRANSIENT_ERRORS = (AutoReconnect,)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    def __init__(self, client, name: str, retry_attempts: int = 3):
        self.client = client
        self.name = name
        self.db = client[name]
        self.retry_attempts = retry_attempts

    @classmethod
    def open(cls, settings: Settings) -> "Database":
        client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000, tz_aware=True)
        logger.info("Connected to MongoDB database %s", settings.database_name)
        return cls(client, settings.database_name, retry_attempts=settings.storage_retry_attempts)

    def close(self) -> None:
        self.client.close()
        logger.info("Closed MongoDB connection")

    def __getitem__(self, collection: str):
        return self.db[collection]

    def run(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Call fn, retrying on transient connection errors.

        Only wrap operations that are safe to repeat.
        """
        retryer = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.1, max=2),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        return retryer(fn, *args, **kwargs)

    def ensure_indexes(self) -> None:
        self.db[ORDERS].create_index([("consumer_id", ASCENDING)])
        self.db[ORDERS].create_index([("items.product_id", ASCENDING)])
        self.db[ORDERS].create_index([("stock_status", ASCENDING)])
        self.db[PRODUCTS].create_index([("farmer_id", ASCENDING)])
        self.db[PRODUCTS].create_index([("created_at", DESCENDING)])

    def ping(self) -> bool:
        try:
            self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning("MongoDB ping failed: %s", e)
            return False

    # ----- Document helpers -----

    def create_document(self, collection: str, data: Union[BaseModel, dict]) -> str:
        """Insert a document stamped with created_at/updated_at and return its id as a string."""
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        now = utcnow()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        result = self.db[collection].insert_one(doc)
        return str(result.inserted_id)
