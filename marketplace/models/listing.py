"""Listing model."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from marketplace.database import Base
from marketplace.models.enums import ListingCategory
from marketplace.models.mixins import TimestampMixin


class Listing(Base, TimestampMixin):
    """A product offered for sale by a single seller."""

    __tablename__ = "products"
    __table_args__ = (CheckConstraint("price >= 0", name="ck_products_price_non_negative"),)

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(
        Enum(
            ListingCategory,
            name="listingcategory",
            values_callable=lambda e: [c.value for c in e],
        ),
        nullable=False,
        index=True,
    )
    description = Column(Text, nullable=False)
    # Asset store key, never a URL. Must always name a stored blob.
    image_reference = Column(String(512), nullable=True)
    contact_number = Column(String(255), nullable=False)
    location = Column(String(255), nullable=False)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    sold = Column(Boolean, default=False, nullable=False, index=True)

    # Relationships
    seller = relationship("User", backref="listings")

    @property
    def seller_name(self) -> str | None:
        return self.seller.name if self.seller is not None else None
