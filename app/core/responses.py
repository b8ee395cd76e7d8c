from typing import Any, Generic, TypeVar

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    success: bool
    message: str = ""
    data: T | None = None
    status_code: int = status.HTTP_200_OK

    def to_json_response(self) -> JSONResponse:
        """Render the envelope with its own status code as the HTTP status."""
        return JSONResponse(
            content=self.model_dump(mode="json"), status_code=self.status_code
        )


def send_success(
    message: str = "Success", data: Any = None, status_code: int = status.HTTP_200_OK
) -> APIResponse:
    return APIResponse(
        success=True, message=message, data=data, status_code=status_code
    )


def send_error(
    message: str = "Error",
    data: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> APIResponse:
    return APIResponse(
        success=False, message=message, data=data, status_code=status_code
    )


def send_not_found(resource: str, identifier: Any) -> APIResponse:
    return send_error(
        message=f"{resource} {identifier} not found",
        data={"identifier": identifier},
        status_code=status.HTTP_404_NOT_FOUND,
    )
