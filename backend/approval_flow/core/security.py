import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from approval_flow.core.config import settings


# ─── JWT ──────────────────────────────────────────────────────────────────────
# Tokens are minted by the auth service; this module shares its secret so the
# workflow API can identify the caller.

@dataclass(frozen=True)
class AccessClaims:
    user_id: uuid.UUID
    role: str | None


def create_access_token(subject: str, role: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    return jwt.encode(
        {"sub": subject, "role": role, "exp": expire, "type": "access"},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(token: str) -> dict:
    """Raises JWTError on invalid/expired token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def decode_access_token(token: str) -> AccessClaims:
    """Verify ``token`` and return its caller claims.

    Raises JWTError for a bad signature, an expired token, a non-access token
    or a subject that is not a user id.
    """
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("not an access token")
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise JWTError("subject is not a user id") from None
    return AccessClaims(user_id=user_id, role=payload.get("role"))
