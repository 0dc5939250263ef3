from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Optional

import bcrypt as _bcrypt_module
import jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..orm_models import UserORM
from .errors import AuthenticationError, ConflictError, ValidationError

logger = logging.getLogger(__name__)

BCRYPT_MAX_BYTES = 72

# passlib reads bcrypt.__about__ and probes hashpw with a >72 byte secret;
# newer bcrypt releases dropped the former and reject the latter.
if not hasattr(_bcrypt_module, "__about__") and hasattr(_bcrypt_module, "__version__"):
    _bcrypt_module.__about__ = SimpleNamespace(__version__=_bcrypt_module.__version__)
    _original_hashpw = _bcrypt_module.hashpw

    def _hashpw_with_truncate(secret: bytes, salt: bytes) -> bytes:
        try:
            return _original_hashpw(secret, salt)
        except ValueError as exc:
            if len(secret) > BCRYPT_MAX_BYTES and ("Password must be at most" in str(exc) or "longer than" in str(exc)):
                return _original_hashpw(secret[:BCRYPT_MAX_BYTES], salt)
            raise

    _bcrypt_module.hashpw = _hashpw_with_truncate

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.auth_bcrypt_rounds,
)
ALGORITHM = "HS256"


@dataclass
class AuthResult:
    token: str
    user_id: str
    email: str
    name: str


def _normalize_email(value: str) -> str:
    return value.strip().lower()


def _ensure_password_within_limit(password: str) -> None:
    """Ensure password length does not exceed bcrypt limits."""
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValidationError("Password must be at most 72 bytes")


def hash_password(password: str) -> str:
    _ensure_password_within_limit(password)
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False


def get_user_by_email(session: Session, email: str) -> Optional[UserORM]:
    return session.execute(
        select(UserORM).where(UserORM.email == _normalize_email(email))
    ).scalar_one_or_none()


def email_exists(session: Session, email: str) -> bool:
    return get_user_by_email(session, email) is not None


def create_access_token(email: str, user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.auth_access_token_expire_minutes))
    to_encode = {"sub": email, "userId": user_id, "exp": expire}
    return jwt.encode(to_encode, settings.auth_secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.auth_secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise AuthenticationError("Invalid token") from exc


def verify_token(token: str) -> str:
    """Return the user id bound to ``token``.

    Tokens are self-contained; there is no server-side session store, so a
    token stays valid until it expires.
    """
    payload = decode_access_token(token)
    user_id = payload.get("userId")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("Invalid token")
    return user_id


def _issue(user: UserORM) -> AuthResult:
    return AuthResult(
        token=create_access_token(user.email, user.id),
        user_id=user.id,
        email=user.email,
        name=user.name,
    )


def signup(session: Session, *, email: str, password: str, name: str) -> AuthResult:
    normalized_email = _normalize_email(email)
    if not normalized_email:
        raise ValidationError("Email is required")
    if email_exists(session, normalized_email):
        raise ConflictError("Email already exists")

    user = UserORM(
        email=normalized_email,
        name=name.strip() or normalized_email,
        password_hash=hash_password(password),
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError as exc:
        raise ConflictError("Email already exists") from exc

    logger.info("Registered user %s", user.id)
    return _issue(user)


def login(session: Session, *, email: str, password: str) -> AuthResult:
    user = get_user_by_email(session, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Rejected login for %s", _normalize_email(email))
        raise AuthenticationError("Invalid email or password")
    return _issue(user)
