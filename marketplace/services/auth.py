"""Authentication service for JWT and password handling."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config import Settings, get_settings
from marketplace.exceptions import (
    AuthenticationError,
    ConflictError,
    DependencyError,
    ValidationError,
)
from marketplace.models.user import User

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried inside a session token."""

    id: int
    name: str
    email: str
    issued_at: datetime
    expires_at: datetime


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def create_access_token(user: User, settings: Settings | None = None) -> str:
    """Create a signed token for ``user`` that expires after the configured lifetime."""
    settings = settings or get_settings()
    issued_at = datetime.now(UTC)
    expire = issued_at + timedelta(minutes=settings.jwt_expiration_minutes)
    to_encode = {
        "sub": str(user.id),
        "name": user.name,
        "email": user.email,
        "iat": issued_at,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings | None = None) -> TokenClaims:
    """Validate a token's signature and expiry and return its claims.

    Verification needs only the shared secret, never a lookup, so tokens
    stay valid until they expire.
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthenticationError("Invalid or expired token") from None

    try:
        return TokenClaims(
            id=int(payload["sub"]),
            name=payload["name"],
            email=payload["email"],
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid or expired token") from None


def get_user_by_email(db: Session, email: str) -> User | None:
    """Get a user by email."""
    return db.query(User).filter(User.email == email.strip().lower()).first()


def authenticate_user(db: Session, email: str, password: str) -> User | None:
    """Authenticate a user by email and password."""
    user = get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def register_user(db: Session, name: str, email: str, password: str) -> User:
    """Create a new user, refusing an email that is already registered."""
    name = name.strip()
    email = email.strip().lower()
    if not name or not email or not password:
        raise ValidationError("Please provide name, email, and password")

    if get_user_by_email(db, email):
        raise ConflictError("Email already registered")

    user = User(name=name, email=email, password_hash=get_password_hash(password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent signup with the same email
        db.rollback()
        raise ConflictError("Email already registered") from None
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Signup failed: {e}")
        raise DependencyError("Server error during signup") from e
    db.refresh(user)
    logger.info(f"Registered user {user.id}")
    return user
