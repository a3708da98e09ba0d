"""
Standardized response utilities
"""

from typing import Any, Optional
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from mealpass.core.exceptions import MealPassError
from mealpass.schemas.common import StandardResponse, ErrorResponse

def success_response(
    message: str,
    data: Any = None,
    status_code: int = 200
) -> JSONResponse:
    """Create standardized success response"""
    response = StandardResponse(
        success=True,
        message=message,
        data=data
    )
    return JSONResponse(
        content=jsonable_encoder(response.model_dump()),
        status_code=status_code
    )

def error_response(
    message: str,
    error_code: Optional[str] = None,
    details: Any = None,
    status_code: int = 400
) -> JSONResponse:
    """Create standardized error response"""
    response = ErrorResponse(
        message=message,
        error_code=error_code,
        details=details
    )
    return JSONResponse(
        content=jsonable_encoder(response.model_dump()),
        status_code=status_code
    )

async def mealpass_error_handler(request: Request, exc: MealPassError) -> JSONResponse:
    """Render any MealPassError through the error envelope"""
    return error_response(
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details or None,
        status_code=exc.status_code
    )
