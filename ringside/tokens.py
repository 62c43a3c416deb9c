import os
from typing import Any, Dict

from jose import ExpiredSignatureError, JWTError, jwt

from .helpers import now_ts

VERIFY_SECRET = os.environ.get("VERIFY_SECRET", "verify-secret-change-me")
ALGORITHM = "HS256"

# verification links stay valid for 30 minutes
VERIFICATION_TTL_SECONDS = 30 * 60


class TokenError(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def make_token(email: str, verification_id: str,
               expires_at: float | None = None,
               secret: str = VERIFY_SECRET) -> str:
    if expires_at is None:
        expires_at = now_ts() + VERIFICATION_TTL_SECONDS
    return jwt.encode({
        "email": email,
        "verificationId": verification_id,
        "exp": int(expires_at),
    }, secret, algorithm=ALGORITHM)


def read_token(token: str, secret: str = VERIFY_SECRET) -> Dict[str, Any]:
    """Check signature and expiry, return the claims.

    Raises TokenError("Invalid token") or TokenError("Token expired").
    Single use is enforced by the caller against the stored verification.
    """
    if not token:
        raise TokenError("Invalid token")
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise TokenError("Token expired")
    except JWTError:
        raise TokenError("Invalid token")
    if not claims.get("verificationId") or not claims.get("email"):
        raise TokenError("Invalid token")
    return claims
