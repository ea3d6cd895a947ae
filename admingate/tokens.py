"""
JWT credential verification.

Tokens are issued by the external identity provider; this module only
verifies signatures and decodes claims. Time based claims are checked against
the caller supplied ``now`` instead of the wall clock, so every component of a
single decision observes the same instant.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import jwt

from .config.schema import SUPPORTED_ALGORITHMS
from .exceptions import TokenExpiredError, TokenInvalidError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an admin bearer token."""

    subject: str
    session_id: str
    expires_at: datetime
    issued_at: datetime | None = None
    device_id: str | None = None


class JwtTokenService:
    """Verifies JWT bearer credentials."""

    def _validate_config(self, config: dict[str, Any]) -> None:
        if not config.get("secret_key"):
            raise ValueError("JWT token service requires 'secret_key' in configuration")
        if config.get("algorithm", "HS256") not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported JWT algorithm: {config['algorithm']}")

    def __init__(self, config: dict[str, Any]):
        """
        Initialize JWT token service.

        Args:
            config: Configuration dictionary containing:
                - secret_key: Key for JWT signature verification (required)
                - algorithm: JWT algorithm (default: HS256)
                - issuer: Expected token issuer (optional)
                - audience: Expected token audience (optional)
        """
        self.config = config.copy()
        self._validate_config(self.config)

        self.secret_key = config["secret_key"]
        self.algorithm = config.get("algorithm", "HS256")
        self.issuer = config.get("issuer")
        self.audience = config.get("audience")

    def verify(self, token_str: str, now: datetime) -> TokenClaims:
        """
        Verify a JWT and return its claims.

        Args:
            token_str: Encoded JWT
            now: Instant the expiry and not-before claims are evaluated at

        Returns:
            Verified token claims

        Raises:
            TokenInvalidError: If the token is malformed, forged or incomplete
            TokenExpiredError: If the token expired at or before ``now``
        """
        if not token_str:
            raise TokenInvalidError("Missing bearer credential")

        try:
            payload = jwt.decode(
                token_str,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "require": ["sub", "sid", "exp"],
                },
            )
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {e}") from e

        exp = payload["exp"]
        nbf = payload.get("nbf")
        iat = payload.get("iat")
        if not isinstance(exp, (int, float)) or (
            nbf is not None and not isinstance(nbf, (int, float))
        ):
            raise TokenInvalidError("Token time claims must be numeric")

        timestamp = now.timestamp()
        if exp <= timestamp:
            raise TokenExpiredError("Token has expired")
        if nbf is not None and nbf > timestamp:
            raise TokenInvalidError("Token is not yet valid")

        subject = payload["sub"]
        session_id = payload["sid"]
        if not isinstance(subject, str) or not isinstance(session_id, str):
            raise TokenInvalidError("Token 'sub' and 'sid' claims must be strings")

        return TokenClaims(
            subject=subject,
            session_id=session_id,
            expires_at=datetime.fromtimestamp(exp, UTC),
            issued_at=(
                datetime.fromtimestamp(iat, UTC)
                if isinstance(iat, (int, float))
                else None
            ),
            device_id=payload.get("device_id"),
        )
