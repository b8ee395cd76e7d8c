from decimal import Decimal
from typing import Any, Iterable, Mapping

from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo.errors import PyMongoError, WriteError

from app.core.exceptions.errors import InvalidValueError, StoreUnavailable
from app.db.repository import PRODUCT_FIELDS, check_fields
from app.db.schemas.product import ProductRead
from app.utils.logging import get_logger


def to_document(fields: Mapping[str, Any]) -> dict:
    """Decimals go in as Decimal128 so prices keep their exact value."""
    return {
        name: Decimal128(value) if isinstance(value, Decimal) else value
        for name, value in fields.items()
    }


def from_document(document: Mapping[str, Any]) -> dict:
    return {
        name: value.to_decimal() if isinstance(value, Decimal128) else value
        for name, value in document.items()
    }


class MongoDatabase:
    """Owns the Mongo client. ``connect`` is connect-or-reuse."""

    def __init__(
        self,
        url: str,
        database: str,
        collection: str,
        client_factory=AsyncIOMotorClient,
        timeout_ms: int = 2000,
    ):
        self.url = url
        self.database = database
        self.collection = collection
        self.client_factory = client_factory
        self.timeout_ms = timeout_ms
        self.client = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    def connect(self) -> AsyncIOMotorCollection:
        if self.client is None:
            self.client = self.client_factory(
                self.url, serverSelectionTimeoutMS=self.timeout_ms
            )
            get_logger().info(f"Mongo client created for {self.database}.{self.collection}")
        return self.client[self.database][self.collection]

    async def init_db(self):
        try:
            await self.connect().create_index("product_id", unique=True)
        except PyMongoError as exc:
            raise StoreUnavailable(operation="init_db") from exc

    async def dispose(self):
        if self.client is None:
            return
        self.client.close()
        self.client = None


class MongoProductRepository:
    """Point lookups and ``$set`` updates on a products collection."""

    updatable_fields = PRODUCT_FIELDS

    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection
        self.logger = get_logger("store")

    async def find_by_id(self, identifier: int) -> ProductRead | None:
        try:
            document = await self._collection.find_one(
                {"product_id": identifier}, {"_id": 0}
            )
        except PyMongoError as exc:
            self.logger.error(f"Lookup failed for product {identifier}: {exc}")
            raise StoreUnavailable(operation="find", identifier=identifier) from exc
        if document is None:
            return None
        return ProductRead.model_validate(from_document(document))

    async def update_by_id(self, identifier: int, fields: Mapping[str, Any]) -> int:
        check_fields(identifier, fields, self.updatable_fields)
        try:
            result = await self._collection.update_one(
                {"product_id": identifier}, {"$set": to_document(fields)}
            )
        except WriteError as exc:
            self.logger.warning(f"Update rejected for product {identifier}: {exc}")
            raise InvalidValueError(
                str(exc), operation="update", identifier=identifier
            ) from exc
        except PyMongoError as exc:
            self.logger.error(f"Update failed for product {identifier}: {exc}")
            raise StoreUnavailable(operation="update", identifier=identifier) from exc
        # matched, not modified: re-setting the current values still counts
        return result.matched_count

    async def replace_all(self, rows: Iterable[Mapping[str, Any]]) -> list[int]:
        rows = list(rows)
        try:
            touched = set(await self._collection.distinct("product_id"))
            await self._collection.delete_many({})
            if rows:
                await self._collection.insert_many([to_document(row) for row in rows])
        except PyMongoError as exc:
            raise StoreUnavailable(operation="replace_all") from exc
        touched.update(row["product_id"] for row in rows)
        return sorted(touched)
