from fastapi import APIRouter

from app.core.dependencies import AccessorDependency
from app.core.responses import send_not_found, send_success
from app.db.schemas.product import ProductUpdate

router = APIRouter(prefix="/products", tags=["products"])


@router.get("/{product_id}")
async def get_product(product_id: int, accessor: AccessorDependency):
    product = await accessor.read(product_id)
    if product is None:
        return send_not_found("Product", product_id).to_json_response()
    return send_success(data=product).to_json_response()


@router.patch("/{product_id}")
async def update_product(
    product_id: int, changes: ProductUpdate, accessor: AccessorDependency
):
    result = await accessor.write(product_id, changes.changes())
    if not result.found:
        return send_not_found("Product", product_id).to_json_response()
    message = "Product updated"
    if not result.invalidated:
        message += "; cached copy could not be invalidated and expires on its own"
    return send_success(message=message, data=result).to_json_response()
