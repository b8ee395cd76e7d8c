from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field as PydanticField, model_validator


class ProductRead(BaseModel):
    """Snapshot of a product row; also the cached representation."""

    product_id: int
    name: str
    price: Decimal
    stock: int

    model_config = ConfigDict(from_attributes=True)


class ProductUpdate(BaseModel):
    name: str | None = PydanticField(None, min_length=1, max_length=255)
    price: Decimal | None = PydanticField(None, ge=0, max_digits=10, decimal_places=2)
    stock: int | None = PydanticField(None, ge=0)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def reject_nulls(self):
        nulled = [f for f in self.model_fields_set if getattr(self, f) is None]
        if nulled:
            raise ValueError(f"Fields cannot be set to null: {', '.join(sorted(nulled))}")
        return self

    def changes(self) -> dict:
        """Only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)


class WriteResult(BaseModel):
    identifier: int | str
    affected: int
    invalidated: bool = False

    @property
    def found(self) -> bool:
        return self.affected > 0
