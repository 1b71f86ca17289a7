"""Enums for model fields."""

from enum import Enum


class ListingCategory(str, Enum):
    """Categories a listing can be filed under."""

    ELECTRONICS = "Electronics"
    BOOKS = "Books"
    CLOTHING = "Clothing"
    FURNITURE = "Furniture"
    OTHER = "Other"

    @classmethod
    def values(cls) -> list[str]:
        return [c.value for c in cls]
