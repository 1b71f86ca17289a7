"""FastAPI dependencies for authentication, database and storage."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from marketplace.config import Settings, get_settings
from marketplace.database import Database
from marketplace.exceptions import AuthenticationError
from marketplace.services.assets import AssetStore
from marketplace.services.auth import TokenClaims, decode_access_token
from marketplace.services.listing_service import ListingService

security = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(database: Annotated[Database, Depends(get_database)]) -> Generator[Session, None, None]:
    """Dependency that provides a pooled database session for one request."""
    with database.session() as db:
        yield db


def get_asset_store(request: Request) -> AssetStore:
    return request.app.state.asset_store


def get_current_identity(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> TokenClaims:
    """Resolve the bearer token to an identity and attach it to the request.

    Guards every mutating endpoint. The token is verified by signature and
    expiry alone; no database lookup is made.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication token required")

    identity = decode_access_token(credentials.credentials, settings)
    request.state.identity = identity
    return identity


def get_listing_service(
    db: Annotated[Session, Depends(get_db)],
    assets: Annotated[AssetStore, Depends(get_asset_store)],
) -> ListingService:
    """Get listing service with dependencies."""
    return ListingService(db, assets)
