from typing import Any, Iterable, Mapping, Protocol, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions.errors import (
    InvalidValueError,
    StoreUnavailable,
    UnknownFieldError,
)
from app.db.models.product import Product
from app.db.schemas.product import ProductRead
from app.utils.logging import get_logger

E = TypeVar("E", covariant=True)

PRODUCT_FIELDS = frozenset({"name", "price", "stock"})


class BackingStore(Protocol[E]):
    """Durable source of truth, addressed by a single identifier."""

    updatable_fields: frozenset[str]

    async def find_by_id(self, identifier) -> E | None: ...

    async def update_by_id(self, identifier, fields: Mapping[str, Any]) -> int: ...


def check_fields(identifier, fields: Mapping[str, Any], allowed: frozenset[str]):
    unknown = set(fields) - allowed
    if unknown:
        raise UnknownFieldError(unknown, operation="update", identifier=identifier)


class ProductRepository:
    """Point lookups and point updates on the ``products`` table."""

    updatable_fields = PRODUCT_FIELDS

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.logger = get_logger("store")

    async def find_by_id(self, identifier: int) -> ProductRead | None:
        try:
            async with self._session_factory() as session:
                product = await session.get(Product, identifier)
                if product is None:
                    return None
                return ProductRead.model_validate(product)
        except SQLAlchemyError as exc:
            self.logger.error(f"Lookup failed for product {identifier}: {exc}")
            raise StoreUnavailable(operation="find", identifier=identifier) from exc

    async def update_by_id(self, identifier: int, fields: Mapping[str, Any]) -> int:
        check_fields(identifier, fields, self.updatable_fields)
        stmt = (
            update(Product)
            .where(Product.product_id == identifier)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    affected = result.rowcount
        except (IntegrityError, DataError) as exc:
            self.logger.warning(f"Update rejected for product {identifier}: {exc.orig}")
            raise InvalidValueError(
                str(exc.orig), operation="update", identifier=identifier
            ) from exc
        except SQLAlchemyError as exc:
            self.logger.error(f"Update failed for product {identifier}: {exc}")
            raise StoreUnavailable(operation="update", identifier=identifier) from exc
        # session.begin() has committed by the time we get here
        return affected

    async def replace_all(self, rows: Iterable[Mapping[str, Any]]) -> list[int]:
        """Swap the table contents for ``rows``.

        Returns every id that existed before or exists after, i.e. every id
        whose cached copy may now be wrong.
        """
        rows = list(rows)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    previous = await session.scalars(select(Product.product_id))
                    touched = set(previous)
                    await session.execute(delete(Product))
                    session.add_all(Product(**row) for row in rows)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(operation="replace_all") from exc
        touched.update(row["product_id"] for row in rows)
        return sorted(touched)
