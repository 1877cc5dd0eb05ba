"""Argon2 password hashing and JWT access tokens for back-office accounts."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from passlib.context import CryptContext
from jose import JWTError, jwt

from config import settings

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Check ``plain_password`` against a stored argon2 hash.
    Accounts without a usable hash (for instance restored from a snapshot
    taken before they set one) never authenticate.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


# -------------------------
# JWT
# -------------------------
def issue_access_token(email: str, role: str, expires_in: Optional[timedelta] = None) -> str:
    """Signed token whose subject is the account e-mail; the role claim is informational."""
    expires_at = datetime.now(timezone.utc) + (
        expires_in or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {"sub": email, "role": role, "exp": expires_at}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def subject_from_token(token: str) -> Optional[str]:
    """Account e-mail carried by a valid, unexpired token; None otherwise."""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    return claims.get("sub")
