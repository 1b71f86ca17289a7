"""Listing lifecycle: create, update, mark sold and delete.

The asset store and the database fail independently and share no
transaction. Writes are ordered so that a listing row never references
an image that is not stored:

* a new image is stored before the row that references it is written;
* an image is deleted only after no row references it any more;
* if the row write fails after an image was stored, the image is
  deleted again (best effort, the error is still raised).

An image left behind by a failed cleanup is tolerated.
"""

import logging
from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from marketplace.exceptions import (
    DependencyError,
    NotFoundError,
    NotFoundOrUnauthorizedError,
    ValidationError,
)
from marketplace.models.enums import ListingCategory
from marketplace.models.listing import Listing
from marketplace.repositories.listings import ListingRepository
from marketplace.schemas.listing import ImageUpload, ListingFilter, ListingResponse
from marketplace.services.assets import AssetStore
from marketplace.services.auth import TokenClaims

logger = logging.getLogger(__name__)

MAX_PRICE = Decimal("99999999.99")
CENTS = Decimal("0.01")

TEXT_FIELDS = ("title", "description", "contact_number", "location")
REQUIRED_FIELDS = ("title", "price", "category", "description", "contact_number", "location")
MAX_LENGTHS = {"title": 255, "description": 5000, "contact_number": 255, "location": 255}


def parse_price(value: Any) -> Decimal:
    """Parse a price into a non-negative fixed-point amount with two decimals."""
    if isinstance(value, bool):
        raise ValidationError("Price must be a valid positive number.")
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Price must be a valid positive number.") from None
    if not price.is_finite() or price < 0:
        raise ValidationError("Price must be a valid positive number.")
    # Checked before quantize, which overflows the context precision on huge values
    if price > MAX_PRICE + CENTS / 2:
        raise ValidationError(f"Price must not exceed {MAX_PRICE}.")
    price = price.quantize(CENTS, rounding=ROUND_HALF_UP)
    if price > MAX_PRICE:
        raise ValidationError(f"Price must not exceed {MAX_PRICE}.")
    return price


def parse_category(value: Any) -> ListingCategory:
    try:
        return ListingCategory(str(value).strip())
    except ValueError:
        raise ValidationError(
            "Category must be one of: " + ", ".join(ListingCategory.values())
        ) from None


def _clean_text(name: str, value: Any) -> str:
    text = str(value).strip()
    if len(text) > MAX_LENGTHS[name]:
        raise ValidationError(f"{name} must be at most {MAX_LENGTHS[name]} characters.")
    return text


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ListingService:
    """Service for listing operations."""

    def __init__(self, db: Session, assets: AssetStore):
        self.db = db
        self.assets = assets
        self.repository = ListingRepository(db)

    def present(self, listing: Listing) -> ListingResponse:
        """Convert a row to its public form with the image resolved to a URL."""
        response = ListingResponse.model_validate(listing)
        if listing.image_reference:
            response.image_reference = self.assets.resolve_url(listing.image_reference)
        return response

    def list_listings(self, filters: ListingFilter | None = None) -> list[ListingResponse]:
        if filters and filters.category:
            filters = replace(filters, category=parse_category(filters.category))
        return [self.present(listing) for listing in self.repository.find(filters)]

    def get_listing(self, listing_id: int) -> ListingResponse:
        listing = self.repository.get(listing_id)
        if listing is None:
            raise NotFoundError("Product not found")
        return self.present(listing)

    def validate_new(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Validate a complete set of fields for a new listing."""
        missing = [name for name in REQUIRED_FIELDS if _is_blank(fields.get(name))]
        if missing:
            raise ValidationError("Missing required product fields: " + ", ".join(missing) + ".")

        values: dict[str, Any] = {name: _clean_text(name, fields[name]) for name in TEXT_FIELDS}
        values["price"] = parse_price(fields["price"])
        values["category"] = parse_category(fields["category"])
        return values

    def validate_changes(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Validate a partial update. Blank or absent fields are left unchanged."""
        values: dict[str, Any] = {}
        for name in TEXT_FIELDS:
            if not _is_blank(fields.get(name)):
                values[name] = _clean_text(name, fields[name])
        if not _is_blank(fields.get("price")):
            values["price"] = parse_price(fields["price"])
        if not _is_blank(fields.get("category")):
            values["category"] = parse_category(fields["category"])
        if fields.get("sold") is not None:
            values["sold"] = bool(fields["sold"])
        return values

    def create_listing(
        self,
        identity: TokenClaims,
        fields: dict[str, Any],
        image: ImageUpload | None = None,
    ) -> ListingResponse:
        values = self.validate_new(fields)

        reference = None
        if image is not None:
            reference = self.assets.store(image.data, image.content_type, image.filename)

        listing = Listing(
            **values,
            image_reference=reference,
            seller_id=identity.id,
            sold=False,
        )
        try:
            listing = self.repository.add(listing)
        except DependencyError:
            if reference:
                logger.warning(f"Removing image {reference} after failed insert")
                self.assets.delete(reference)
            raise

        logger.info(f"User {identity.id} created listing {listing.id}")
        # Reload through the repository so the seller join is populated
        return self.present(self.repository.get(listing.id) or listing)

    def update_listing(
        self,
        identity: TokenClaims,
        listing_id: int,
        fields: dict[str, Any],
        image: ImageUpload | None = None,
    ) -> ListingResponse:
        existing = self.repository.get_owned(listing_id, identity.id)
        if existing is None:
            raise NotFoundOrUnauthorizedError()

        values = self.validate_changes(fields)

        old_reference = existing.image_reference
        new_reference = None
        if image is not None:
            new_reference = self.assets.store(image.data, image.content_type, image.filename)
            values["image_reference"] = new_reference

        if values:
            try:
                updated = self.repository.update_owned(listing_id, identity.id, values)
            except DependencyError:
                if new_reference:
                    logger.warning(f"Removing image {new_reference} after failed update")
                    self.assets.delete(new_reference)
                raise
            if not updated:
                # Deleted between the read and the write
                if new_reference:
                    self.assets.delete(new_reference)
                raise NotFoundOrUnauthorizedError()

        if new_reference and old_reference:
            self.assets.delete(old_reference)

        logger.info(f"User {identity.id} updated listing {listing_id}: {sorted(values)}")
        listing = self.repository.get_owned(listing_id, identity.id)
        if listing is None:
            raise NotFoundOrUnauthorizedError()
        return self.present(listing)

    def mark_sold(self, identity: TokenClaims, listing_id: int) -> ListingResponse:
        """Flip the sold flag. Calling it twice restores the original state."""
        existing = self.repository.get_owned(listing_id, identity.id)
        if existing is None:
            raise NotFoundOrUnauthorizedError()
        return self.update_listing(identity, listing_id, {"sold": not existing.sold})

    def delete_listing(self, identity: TokenClaims, listing_id: int) -> None:
        existing = self.repository.get_owned(listing_id, identity.id)
        if existing is None:
            raise NotFoundOrUnauthorizedError()
        reference = existing.image_reference

        if not self.repository.delete_owned(listing_id, identity.id):
            raise NotFoundOrUnauthorizedError()
        logger.info(f"User {identity.id} deleted listing {listing_id}")

        if reference:
            self.assets.delete(reference)
