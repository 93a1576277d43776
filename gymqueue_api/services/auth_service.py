"""JWT verification for member requests.

Tokens are issued by the identity service; this service only verifies them.
"""

import logging
from dataclasses import dataclass

import jwt

logger = logging.getLogger(__name__)


@dataclass
class Member:
    """Authenticated caller."""

    member_id: str
    display_name: str


class AuthService:
    """Validate member JWTs"""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        if not secret_key:
            raise ValueError("JWT secret key cannot be empty")

        self.secret_key = secret_key
        self.algorithm = algorithm

    def verify_token(self, token: str) -> dict | None:
        """Verify a JWT token and return the payload if valid"""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        if payload.get("sub") is None:
            logger.warning("Token missing sub")
            return None
        return payload

    def member_from_token(self, token: str) -> Member | None:
        """Resolve the member behind a token, or None if it is not valid"""
        payload = self.verify_token(token)
        if payload is None:
            return None
        member_id = str(payload["sub"])
        return Member(member_id=member_id, display_name=str(payload.get("name") or member_id))
