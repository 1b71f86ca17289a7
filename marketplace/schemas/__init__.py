"""Pydantic schemas for API requests and responses."""

from marketplace.schemas.auth import AuthResponse, UserLogin, UserResponse, UserSignup
from marketplace.schemas.listing import (
    ImageUpload,
    ListingEnvelope,
    ListingFilter,
    ListingResponse,
    MessageResponse,
)

__all__ = [
    "UserSignup",
    "UserLogin",
    "UserResponse",
    "AuthResponse",
    "ImageUpload",
    "ListingFilter",
    "ListingResponse",
    "ListingEnvelope",
    "MessageResponse",
]
