"""Short-lived session tokens issued by the WordPress login exchange."""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "credit_gateway_session"


def login_signature(wp_user_id: str, email: str, secret: Optional[str] = None) -> str:
    """Hex HMAC-SHA256 over ``"{wp_user_id}|{email}"`` with the shared secret."""
    key = (secret if secret is not None else settings.SHARED_SECRET).encode("utf-8")
    message = f"{wp_user_id}|{email}".encode("utf-8")
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def verify_login_signature(wp_user_id: str, email: str, signature: str) -> bool:
    expected = login_signature(wp_user_id, email)
    return hmac.compare_digest(expected, str(signature or "").strip().lower())


def create_session_token(
    account_id: str,
    wp_user_id: str,
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a signed session token for an account."""
    now = datetime.now(timezone.utc)
    ttl_minutes = int(expires_minutes or settings.JWT_EXPIRATION_MINUTES or 15)
    expires_at = now + timedelta(minutes=max(ttl_minutes, 1))
    claims: Dict[str, Any] = {
        "sub": account_id,
        "user_id": account_id,
        "wp_user_id": str(wp_user_id),
        "type": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email

    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {
        "token": token,
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed session token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    token_type = str(payload.get("type", "")).strip()
    if token_type != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Session token missing subject.")

    return payload
