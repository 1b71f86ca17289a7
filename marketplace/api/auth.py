"""Authentication API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_app_settings, get_current_identity, get_db
from marketplace.config import Settings
from marketplace.exceptions import AuthenticationError
from marketplace.schemas.auth import AuthResponse, UserLogin, UserResponse, UserSignup
from marketplace.services.auth import (
    TokenClaims,
    authenticate_user,
    create_access_token,
    register_user,
)

router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def signup(
    user_data: UserSignup,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
):
    """Register a new user."""
    user = register_user(db, user_data.name, user_data.email, user_data.password)

    return AuthResponse(
        message="User registered successfully",
        user=UserResponse.model_validate(user),
        token=create_access_token(user, settings),
    )


@router.post("/login", response_model=AuthResponse)
def login(
    credentials: UserLogin,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
):
    """Login with email and password."""
    user = authenticate_user(db, credentials.email, credentials.password)

    if not user:
        raise AuthenticationError("Invalid credentials")

    return AuthResponse(
        message="Logged in successfully",
        user=UserResponse.model_validate(user),
        token=create_access_token(user, settings),
    )


@router.get("/me", response_model=UserResponse)
def get_me(
    identity: Annotated[TokenClaims, Depends(get_current_identity)],
):
    """Get the identity carried by the current token."""
    return UserResponse(id=identity.id, name=identity.name, email=identity.email)
