"""JWT utilities for authentication."""

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidSignatureError, InvalidTokenError

from .exceptions import (
    InvalidTokenSignatureException,
    InvalidTokenTypeException,
    MalformedTokenException,
    TokenExpiredException,
)

REFRESH_TOKEN_BYTES = 32


class TokenType(StrEnum):
    """Token type discriminator carried in the ``tokenType`` claim."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Claims:
    """Identity and permission claims carried by a signed token."""

    user_id: int
    username: str
    email: str
    role: str
    permissions: list[str] = field(default_factory=list)
    principal_type: str = "user"
    token_type: TokenType = TokenType.ACCESS
    issued_at: datetime | None = None
    expires_at: datetime | None = None

    def has_permission(self, permission: str) -> bool:
        """Check if the claims grant a specific permission."""
        return permission in self.permissions

    def to_payload(self) -> dict[str, Any]:
        """Serialize the identity part of the claims to JWT payload keys."""
        return {
            "userId": self.user_id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "permissions": list(self.permissions),
            "principalType": self.principal_type,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Claims":
        """Build claims from a decoded JWT payload.

        Raises:
            MalformedTokenException: If a required claim is missing or has the wrong type

        """
        try:
            permissions = payload.get("permissions") or []
            if not isinstance(permissions, list):
                raise TypeError("permissions claim must be a list")
            return cls(
                user_id=int(payload["userId"]),
                username=str(payload["username"]),
                email=str(payload.get("email") or ""),
                role=str(payload.get("role") or ""),
                permissions=[str(p) for p in permissions],
                principal_type=str(payload.get("principalType") or "user"),
                token_type=TokenType(payload["tokenType"]),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), UTC),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), UTC),
            )
        except (KeyError, TypeError, ValueError) as err:
            raise MalformedTokenException() from err


class TokenCodec:
    """Issue and verify HMAC-signed JWTs.

    Args:
        secret: Signing secret for access tokens
        refresh_secret: Signing secret for refresh-type tokens. Falls back to
            ``secret`` when not set.
        algorithm: HMAC algorithm name understood by PyJWT

    """

    def __init__(self, secret: str, refresh_secret: str | None = None, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._refresh_secret = refresh_secret or secret
        self.algorithm = algorithm

    def _secret_for(self, token_type: TokenType) -> str:
        if token_type == TokenType.REFRESH:
            return self._refresh_secret
        return self._secret

    def issue(
        self,
        claims: Claims,
        token_type: TokenType = TokenType.ACCESS,
        ttl: timedelta = timedelta(minutes=15),
        *,
        now: datetime | None = None,
    ) -> str:
        """Sign a token carrying the given claims.

        Args:
            claims: Identity claims. Their timestamps and token type are ignored.
            token_type: Token type to embed
            ttl: Lifetime from ``now``
            now: Issue time (defaults to the current time)

        Returns:
            Encoded JWT token string

        """
        issued_at = now or datetime.now(UTC)
        payload = claims.to_payload()
        payload.update(
            {
                "tokenType": token_type.value,
                "iat": issued_at,
                "exp": issued_at + ttl,
            }
        )
        return jwt.encode(payload, self._secret_for(token_type), algorithm=self.algorithm)

    def _decode(self, token: str, token_type: TokenType, verify_exp: bool) -> Claims:
        try:
            payload = jwt.decode(
                token,
                self._secret_for(token_type),
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat"], "verify_exp": verify_exp},
            )
        except ExpiredSignatureError as err:
            raise TokenExpiredException() from err
        except InvalidSignatureError as err:
            raise InvalidTokenSignatureException() from err
        except InvalidTokenError as err:
            raise MalformedTokenException() from err

        if payload.get("tokenType") != token_type.value:
            raise InvalidTokenTypeException(expected=token_type.value)

        return Claims.from_payload(payload)

    def verify(self, token: str, token_type: TokenType = TokenType.ACCESS) -> Claims:
        """Verify signature, expiry and type of a token.

        Raises:
            TokenExpiredException: If the token has expired
            InvalidTokenSignatureException: If the signature does not match
            MalformedTokenException: If the token cannot be decoded
            InvalidTokenTypeException: If the token is of another type

        """
        return self._decode(token, token_type, verify_exp=True)

    def decode_unverified_expiry(self, token: str, token_type: TokenType = TokenType.ACCESS) -> Claims:
        """Verify a token's signature and type but accept it past its expiry.

        Used at logout, where an expired token simply needs no further handling.
        """
        return self._decode(token, token_type, verify_exp=False)


def generate_refresh_token() -> str:
    """Generate an opaque refresh token (256 bits, hex encoded)."""
    return secrets.token_hex(REFRESH_TOKEN_BYTES)
