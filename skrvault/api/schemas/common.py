"""
Common Pydantic schemas for API responses and requests.
Provides base classes and common data structures.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel


class APIResponse(BaseModel):
    """Base API response model."""
    model_config = ConfigDict(
        json_encoders={
            datetime: lambda dt: dt.isoformat(),
        },
        populate_by_name=True,
    )

    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class SuccessResponse(APIResponse):
    """Success response model."""
    data: Optional[Any] = None


class ErrorResponse(APIResponse):
    """Error response model; ``code`` is stable for clients to branch on."""
    success: bool = False
    code: str = "INTERNAL_ERROR"
    details: Optional[Dict[str, Any]] = None


class CamelModel(BaseModel):
    """Payload model exposed with camelCase field names."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str = "0.1.0"
    services: Dict[str, str] = Field(
        default_factory=lambda: {
            "database": "healthy",
            "blockchain": "configured",
        }
    )


# Common field types
WalletField = Field(
    min_length=32,
    max_length=44,
    pattern=r"^[1-9A-HJ-NP-Za-km-z]+$",
    description="Solana wallet address"
)

MintField = Field(
    min_length=32,
    max_length=44,
    pattern=r"^[1-9A-HJ-NP-Za-km-z]+$",
    description="Token mint address"
)


def create_success_response(data: Any = None, message: str = None) -> SuccessResponse:
    """Create a success response."""
    return SuccessResponse(data=data, message=message)


def create_error_response(
    message: str,
    code: str = "INTERNAL_ERROR",
    details: Dict[str, Any] = None
) -> ErrorResponse:
    """Create an error response."""
    return ErrorResponse(message=message, code=code, details=details)
