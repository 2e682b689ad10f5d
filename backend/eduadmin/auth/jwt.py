"""Identity token creation and validation."""

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from jose import JWTError, jwt

from eduadmin.config import settings

ALGORITHM = "HS256"

# Claims the identity provider owns; custom claims may not shadow them.
RESERVED_CLAIMS = frozenset({"sub", "email", "iat", "exp", "type"})


def create_id_token(uid: str, email: str, custom_claims: Mapping[str, Any] | None = None) -> str:
    """Create an id token carrying the account's custom claims (role, appRoleId)."""
    now = datetime.now(timezone.utc)
    payload = {
        k: v for k, v in (custom_claims or {}).items() if k not in RESERVED_CLAIMS
    }
    payload.update({
        "sub": uid,
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=settings.id_token_expire_minutes),
        "type": "id",
    })
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_id_token(token: str) -> dict:
    """Decode and validate an id token. Raises JWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    if payload.get("type") != "id":
        raise JWTError("Invalid token type")
    return payload
