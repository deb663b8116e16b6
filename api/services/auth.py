# SPDX-License-Identifier: Apache-2.0

"""
Authentication service for JWT token verification.

Donor sessions are issued by the external identity provider; this service
only verifies RS256-signed access tokens and exposes their claims. The
``sub`` claim carries the donor id and ``org_id`` the organization.
"""

import os
import jwt
from typing import Optional, Dict, Any, Tuple
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("sub", "org_id")


class TokenValidationError(Exception):
    """Raised when token validation fails."""
    pass


def generate_key_pair() -> Tuple[str, str]:
    """Generate an RSA key pair (PEM private, PEM public) for development and tests."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    return private_pem, public_pem


class AuthService:
    """
    JWT verification service with RS256 signatures.
    """

    def __init__(self, public_key: Optional[str] = None, issuer: Optional[str] = None):
        """
        Initialize the authentication service.

        Args:
            public_key: RS256 public key for token verification (PEM format)
            issuer: Expected ``iss`` claim, if the identity provider sets one
        """
        self.public_key = public_key or self._get_public_key()
        self.issuer = issuer or os.getenv("JWT_ISSUER") or None
        self.algorithm = "RS256"

    def _get_public_key(self) -> Optional[str]:
        """Get public key from environment."""
        public_key_env = os.getenv("JWT_PUBLIC_KEY")
        if public_key_env:
            # Keys passed through env files often carry escaped newlines
            return public_key_env.replace("\\n", "\n")

        logger.warning("No JWT_PUBLIC_KEY found; every authenticated request will be rejected")
        return None

    def validate_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """
        Validate and decode a JWT token.

        Args:
            token: JWT token string to validate
            token_type: Expected token type, checked when the token declares one

        Returns:
            Decoded token payload

        Raises:
            TokenValidationError: If token is invalid, expired or lacks donor claims
        """
        with tracer.start_as_current_span("auth.validate_token") as span:
            span.set_attributes({
                "auth.operation": "validate_token",
                "auth.token_type": token_type
            })

            if not self.public_key:
                span.set_attribute("auth.validation_result", "unconfigured")
                raise TokenValidationError("Token verification key is not configured")

            options = {"verify_exp": True, "require": ["exp", "sub"]}
            kwargs: Dict[str, Any] = {}
            if self.issuer:
                kwargs["issuer"] = self.issuer

            try:
                payload = jwt.decode(
                    token,
                    self.public_key,
                    algorithms=[self.algorithm],
                    options=options,
                    **kwargs
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                logger.warning("Token validation failed: token expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning(f"Token validation failed: {str(e)}")
                raise TokenValidationError(f"Invalid token: {str(e)}")

            # Verify token type when present
            if payload.get("type", token_type) != token_type:
                span.set_attribute("auth.validation_result", "wrong_type")
                raise TokenValidationError(f"Invalid token type. Expected {token_type}")

            missing = [claim for claim in REQUIRED_CLAIMS if not payload.get(claim)]
            if missing:
                span.set_attribute("auth.validation_result", "missing_claims")
                raise TokenValidationError(f"Token is missing claims: {', '.join(missing)}")

            span.set_attributes({
                "auth.validation_result": "success",
                "user.id": payload.get("sub"),
                "organization.id": payload.get("org_id")
            })

            logger.debug(
                "Token validated successfully",
                extra={
                    "user_id": payload.get("sub"),
                    "organization_id": payload.get("org_id"),
                    "token_type": token_type
                }
            )

            return payload
