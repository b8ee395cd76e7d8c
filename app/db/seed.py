from decimal import Decimal

from app.utils.logging import get_logger

SAMPLE_PRODUCTS = [
    {"product_id": 101, "name": "Laptop", "price": Decimal("1000.00"), "stock": 50},
    {"product_id": 102, "name": "Smartphone", "price": Decimal("500.00"), "stock": 200},
    {"product_id": 103, "name": "Tablet", "price": Decimal("300.00"), "stock": 100},
    {"product_id": 104, "name": "Monitor", "price": Decimal("200.00"), "stock": 75},
    {"product_id": 105, "name": "Keyboard", "price": Decimal("50.00"), "stock": 150},
]


async def seed_products(repository, products=None, accessor=None) -> list:
    """Replace the store contents with the sample rows.

    When ``accessor`` is given, the cached copy of every product that existed
    before or after the reseed is dropped, so no read serves pre-seed data.
    Returns the ids whose contents may have changed.
    """
    products = SAMPLE_PRODUCTS if products is None else products
    touched = await repository.replace_all(products)
    get_logger().info(f"Seeded {len(products)} products")
    if accessor is not None:
        stale = [pid for pid in touched if not await accessor.invalidate(pid)]
        if stale:
            get_logger("cache").warning(
                f"Could not drop cached copies of {stale} after seeding"
            )
    return touched
