"""Password hashing, access tokens and the account workflows built on them."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import bcrypt
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import settings
from library import Library
from models import User
from services.email_service import send_email
from utils.validators import EmailValidator, TextValidator

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72

bearer_scheme = HTTPBearer(auto_error=False)


class InvalidCredentialsError(ValueError):
    pass


class AccountDisabledError(PermissionError):
    pass


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user: User, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_expiration_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    to_encode = {"sub": str(user.id), "id": user.id, "role": user.role, "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Return the token claims; raises ``JWTError`` for bad signatures or expired tokens."""
    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    if not isinstance(payload.get("id"), int):
        raise JWTError("Token has no user id")
    return payload


def validate_registration(name: str, email: str, password: str, role: str) -> None:
    if not TextValidator.validate_name(name):
        raise ValueError("Name is required.")
    if not EmailValidator.is_valid_email(email):
        raise ValueError("Invalid email address.")
    if password is None or len(password) < MIN_PASSWORD_LENGTH or len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_BYTES} characters.")
    if role not in ("admin", "member"):
        raise ValueError("Role must be 'admin' or 'member'.")


def register_user(library: Library, name: str, email: str, password: str,
                  role: str = "member") -> Tuple[User, bool]:
    """Create an unverified account and mail its verification link.

    Returns the new user and whether the verification email went out.
    """
    email = EmailValidator.normalize_email(email)
    validate_registration(name, email, password, role)

    token = secrets.token_hex(32)
    user = library.create_user(name, email, hash_password(password), role=role, verification_token=token)

    link = f"{settings.base_url.rstrip('/')}/auth/verify-email?token={token}"
    sent = send_email(
        user.email,
        "Verify your email",
        f"Hello {user.name},\n\nPlease verify your email address by opening this link:\n{link}\n",
    )
    logger.info("Registered user %s (%s)", user.id, user.role)
    return user, sent


def login_user(library: Library, email: str, password: str) -> str:
    user = library.find_user_by_email(EmailValidator.normalize_email(email))
    if not user:
        raise LookupError("User not found")
    if not verify_password(password, user.password):
        raise InvalidCredentialsError("Invalid credentials")
    if user.is_disabled:
        raise AccountDisabledError("User account is disabled")
    return create_access_token(user)


def verify_email(library: Library, token: Optional[str]) -> User:
    if not token or not token.strip():
        raise ValueError("Invalid verification token")
    user = library.verify_user_email(token.strip())
    if not user:
        raise ValueError("Invalid or expired token")
    return user


def authenticate(credentials: Optional[HTTPAuthorizationCredentials], library: Library) -> User:
    """Resolve a bearer credential to an active user or raise the matching HTTP error."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=403, detail="Invalid token")

    user = library.get_user(payload["id"])
    if not user or user.is_disabled:
        raise HTTPException(status_code=403, detail="Invalid token")
    return user


def ensure_admin(user: User) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
