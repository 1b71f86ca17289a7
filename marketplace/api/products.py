"""Product listing API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from marketplace.api.dependencies import get_current_identity, get_listing_service
from marketplace.schemas.listing import (
    ImageUpload,
    ListingEnvelope,
    ListingFilter,
    ListingResponse,
    MessageResponse,
)
from marketplace.services.auth import TokenClaims
from marketplace.services.listing_service import ListingService

router = APIRouter(prefix="/api/products", tags=["products"])


def read_image(upload: UploadFile | None, max_bytes: int) -> ImageUpload | None:
    """Read an uploaded file, treating an empty file part as no image.

    Reads at most one byte past the limit so oversized files are rejected
    without being loaded whole.
    """
    if upload is None:
        return None
    data = upload.file.read(max_bytes + 1)
    if not data and not upload.filename:
        return None
    return ImageUpload(
        data=data,
        content_type=upload.content_type or "",
        filename=upload.filename,
    )


@router.get("", response_model=list[ListingResponse])
def get_products(
    service: Annotated[ListingService, Depends(get_listing_service)],
    category: str | None = Query(default=None, description="Exact category"),
    search: str | None = Query(default=None, description="Substring of title or description"),
    seller_id: int | None = Query(default=None),
    sold: bool | None = Query(default=None),
):
    """Browse listings, newest first."""
    filters = ListingFilter(category=category, search=search, seller_id=seller_id, sold=sold)
    return service.list_listings(filters)


@router.get("/{product_id}", response_model=ListingResponse)
def get_product(
    product_id: int,
    service: Annotated[ListingService, Depends(get_listing_service)],
):
    """Get a single listing."""
    return service.get_listing(product_id)


@router.post("", response_model=ListingEnvelope, status_code=status.HTTP_201_CREATED)
def create_product(
    identity: Annotated[TokenClaims, Depends(get_current_identity)],
    service: Annotated[ListingService, Depends(get_listing_service)],
    title: Annotated[str | None, Form()] = None,
    price: Annotated[str | None, Form()] = None,
    category: Annotated[str | None, Form()] = None,
    description: Annotated[str | None, Form()] = None,
    contact_number: Annotated[str | None, Form()] = None,
    location: Annotated[str | None, Form()] = None,
    image_file: Annotated[UploadFile | None, File()] = None,
):
    """Create a listing owned by the caller."""
    fields = {
        "title": title,
        "price": price,
        "category": category,
        "description": description,
        "contact_number": contact_number,
        "location": location,
    }
    image = read_image(image_file, service.assets.max_bytes)
    product = service.create_listing(identity, fields, image)
    return ListingEnvelope(message="Product added successfully", product=product)


@router.put("/{product_id}", response_model=ListingEnvelope)
def update_product(
    product_id: int,
    identity: Annotated[TokenClaims, Depends(get_current_identity)],
    service: Annotated[ListingService, Depends(get_listing_service)],
    title: Annotated[str | None, Form()] = None,
    price: Annotated[str | None, Form()] = None,
    category: Annotated[str | None, Form()] = None,
    description: Annotated[str | None, Form()] = None,
    contact_number: Annotated[str | None, Form()] = None,
    location: Annotated[str | None, Form()] = None,
    sold: Annotated[bool | None, Form()] = None,
    image_file: Annotated[UploadFile | None, File()] = None,
):
    """Update a listing. Omitted or blank fields keep their current values."""
    fields = {
        "title": title,
        "price": price,
        "category": category,
        "description": description,
        "contact_number": contact_number,
        "location": location,
        "sold": sold,
    }
    image = read_image(image_file, service.assets.max_bytes)
    product = service.update_listing(identity, product_id, fields, image)
    return ListingEnvelope(message="Product updated successfully", product=product)


@router.post("/{product_id}/sold", response_model=ListingEnvelope)
def toggle_sold(
    product_id: int,
    identity: Annotated[TokenClaims, Depends(get_current_identity)],
    service: Annotated[ListingService, Depends(get_listing_service)],
):
    """Toggle the sold flag of a listing."""
    product = service.mark_sold(identity, product_id)
    state = "sold" if product.sold else "available"
    return ListingEnvelope(message=f"Product marked as {state}", product=product)


@router.delete("/{product_id}", response_model=MessageResponse)
def delete_product(
    product_id: int,
    identity: Annotated[TokenClaims, Depends(get_current_identity)],
    service: Annotated[ListingService, Depends(get_listing_service)],
):
    """Delete a listing and its image."""
    service.delete_listing(identity, product_id)
    return MessageResponse(message="Product deleted successfully")
