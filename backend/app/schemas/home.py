"""
Billow Backend — Pydantic Request/Response Schemas
===================================================

What:  Pydantic models defining the API contract for homes.
Why:   Strict input validation, the update allow-list, automatic serialization,
       and OpenAPI doc generation.
How:   Listing fields are declared once in `_ListingFields`; create, update and
       response models derive from it with different optionality.

Naming:
    The wire format keeps the historical camelCase `squareFeet` and the
    `streetQuery` selector; everything else is snake_case. Models accept both
    the alias and the Python name (populate_by_name) and serialize by alias.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.sanitize import sanitize_text


# ══════════════════════════════════════════════════════════════════════════
# Listing payloads
# ══════════════════════════════════════════════════════════════════════════


class _ListingFields(BaseModel):
    """Non-image listing attributes, all required."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    price: float = Field(ge=0, description="Asking price")
    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=120)
    state: str = Field(min_length=1, max_length=64)
    zip: str = Field(min_length=1, max_length=20)
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    bedrooms: int = Field(ge=0)
    bathrooms: float = Field(ge=0)
    square_feet: int = Field(ge=0, alias="squareFeet")
    description: str = Field(min_length=1)
    agent: str = Field(min_length=1, max_length=120)
    agent_phone: str = Field(min_length=1, max_length=40)


class HomeCreate(_ListingFields):
    """
    What:  Text part of POST /homes/new.
    Why no image fields: the four images arrive as file parts and are
           merged in by the image path reviser; a client cannot supply
           image URIs directly on create.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="forbid")


class HomeUpdate(BaseModel):
    """
    What:  Allow-list of fields PATCH /homes/update may change.
    Why:   Only these keys ever reach the UPDATE statement; anything else in
           the body is rejected with 400 rather than written blindly.

    Image fields may be given as strings (keep/replace a URI) or replaced by
    uploading a file part with the same name.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="forbid")

    price: Optional[float] = Field(default=None, ge=0)
    street: Optional[str] = Field(default=None, min_length=1, max_length=255)
    city: Optional[str] = Field(default=None, min_length=1, max_length=120)
    state: Optional[str] = Field(default=None, min_length=1, max_length=64)
    zip: Optional[str] = Field(default=None, min_length=1, max_length=20)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0)
    square_feet: Optional[int] = Field(default=None, ge=0, alias="squareFeet")
    description: Optional[str] = Field(default=None, min_length=1)
    agent: Optional[str] = Field(default=None, min_length=1, max_length=120)
    agent_phone: Optional[str] = Field(default=None, min_length=1, max_length=40)
    agent_img: Optional[str] = Field(default=None, max_length=512)
    house_img_main: Optional[str] = Field(default=None, max_length=512)
    house_img_inside_1: Optional[str] = Field(default=None, max_length=512)
    house_img_inside_2: Optional[str] = Field(default=None, max_length=512)

    def to_patch(self) -> dict:
        """Only the fields the caller actually sent, keyed by column name."""
        return self.model_dump(exclude_unset=True)


class StreetQuery(BaseModel):
    """
    What:  Selector body for DELETE /homes/delete.
    How:   Markup is stripped before the value is used; an empty result after
           stripping is rejected so a query can never match "everything".
    """

    model_config = ConfigDict(populate_by_name=True)

    street_query: str = Field(alias="streetQuery")

    @field_validator("street_query")
    @classmethod
    def clean_street_query(cls, v: str) -> str:
        cleaned = sanitize_text(v)
        if not cleaned:
            raise ValueError("streetQuery must not be empty")
        return cleaned


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class HomeResponse(_ListingFields):
    """
    What:  Full representation of a listing.
    Who:   GET /homes/{id}, list pages, search results, and the Redis cache
           (the cached value is exactly this model's JSON).
    """

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: uuid.UUID = Field(description="Store-assigned listing identifier")
    agent_img: str = Field(description="Agent portrait URI")
    house_img_main: str = Field(description="Main exterior image URI")
    house_img_inside_1: str = Field(description="First interior image URI")
    house_img_inside_2: str = Field(description="Second interior image URI")
    created_at: datetime = Field(description="When the listing was created (UTC)")

    def to_cache(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_cache(cls, payload: str) -> "HomeResponse":
        return cls.model_validate_json(payload)


class PageRef(BaseModel):
    """Coordinates of a neighbouring page."""

    page: int
    limit: int


class HomePage(BaseModel):
    """
    What:  Offset-paginated listing page.
    How:   `previous` only when the window starts past the first record;
           `next` only when records remain after the window. Absent links are
           omitted from the JSON body.
    """

    results: List[HomeResponse] = Field(description="Homes in insertion order")
    previous: Optional[PageRef] = Field(default=None)
    next: Optional[PageRef] = Field(default=None)
    total: int = Field(description="Total number of homes in the store")


class MessageResponse(BaseModel):
    message: str


class HomeCreatedResponse(BaseModel):
    message: str = "New home created!"
    home: HomeResponse


class MutationResponse(BaseModel):
    """
    Result of a street-matched update or delete.

    `matched` is 0 when no home had that street; that is still a 200.
    """

    message: str
    matched: int = Field(ge=0, description="Homes changed by this request (0 or 1)")


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "not_found",
            "message": "home with ID '...' was not found",
            "request_id": "a1b2c3d4"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    What:  Health check response showing service and dependency status.

    The cache being down only degrades the service; the database being down
    makes it unhealthy.
    """

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    cache: str = Field(description="Cache status: available, unavailable, circuit_open, disabled")
    uptime_seconds: float = Field(description="Seconds since service started")
