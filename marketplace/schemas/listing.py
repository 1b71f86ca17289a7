"""Listing schemas."""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from marketplace.models.enums import ListingCategory


@dataclass
class ListingFilter:
    """Optional filters for browsing listings."""

    category: str | None = None
    search: str | None = None
    seller_id: int | None = None
    sold: bool | None = None


@dataclass
class ImageUpload:
    """An uploaded image as received from the client."""

    data: bytes
    content_type: str
    filename: str | None = None


class ListingResponse(BaseModel):
    """Listing as returned to clients, with its image resolved to a URL."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    price: float
    category: ListingCategory
    description: str
    image_reference: str | None
    contact_number: str
    location: str
    seller_id: int
    seller_name: str | None = None
    sold: bool
    created_at: datetime
    updated_at: datetime


class ListingEnvelope(BaseModel):
    message: str
    product: ListingResponse


class MessageResponse(BaseModel):
    message: str
