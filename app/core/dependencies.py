from typing import Annotated

from fastapi import Depends, Request

from app.services.cache_aside import CacheAsideAccessor


def get_accessor(request: Request) -> CacheAsideAccessor:
    """The accessor built at startup; shared by every request."""
    return request.app.state.accessor


AccessorDependency = Annotated[CacheAsideAccessor, Depends(get_accessor)]
