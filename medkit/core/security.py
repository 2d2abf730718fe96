# medkit/core/security.py
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt, JWTError
from passlib.context import CryptContext

from medkit.core.config import settings
from medkit.core.exceptions import UnauthenticatedError

pwd_context = CryptContext(schemes=["bcrypt", "pbkdf2_sha256"],
                           deprecated="auto")


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """
    Safe wrapper around passlib verify; a malformed or unknown hash
    counts as a mismatch instead of blowing up the request.
    """
    if not plain or not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def create_access_token(subject: str,
                        expires_delta: Optional[timedelta] = None) -> str:
    # Tokens are normally minted by the identity provider; kept for dev/tests.
    now = datetime.utcnow()
    delta = expires_delta or timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": subject,  # user email
        "iat": now,
        "exp": now + delta,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token,
                          settings.JWT_SECRET,
                          algorithms=[settings.JWT_ALG])
    except JWTError:
        raise UnauthenticatedError("Invalid token")
