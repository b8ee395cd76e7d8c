from fastapi import APIRouter

from app.core.dependencies import AccessorDependency
from app.core.responses import send_success

router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("/stats")
async def cache_stats(accessor: AccessorDependency):
    return send_success(data=accessor.stats().as_dict())
