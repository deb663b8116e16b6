# SPDX-License-Identifier: Apache-2.0

"""
Authentication middleware for JWT token validation and donor context extraction.

This module provides Flask decorators that validate the bearer token and
build the explicit DonorContext handed to the booking core.
"""

from functools import wraps
from flask import current_app, request, g
from typing import Optional, Dict, Any, Callable
from opentelemetry import trace
import logging

from middleware.error_handler import AuthenticationException, AuthorizationException
from models.entities import DonorContext
from services.auth import TokenValidationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthMiddleware:
    """
    JWT authentication middleware for Flask applications.

    Handles token extraction, validation and donor context building for
    protected endpoints.
    """

    def __init__(self, auth_service):
        """
        Initialize the authentication middleware.

        Args:
            auth_service: JWT authentication service
        """
        self.auth_service = auth_service

    def extract_token_from_request(self) -> Optional[str]:
        """
        Extract JWT token from request headers.

        Returns:
            JWT token string or None if not found
        """
        auth_header = request.headers.get('Authorization', '')

        if not auth_header:
            return None

        # Handle "Bearer <token>" format
        if auth_header.startswith('Bearer '):
            return auth_header[7:].strip() or None

        return None

    def build_donor_context(self, token_payload: Dict[str, Any], request_info: Dict[str, Any]) -> DonorContext:
        """
        Build donor context from validated token payload and request information.

        Args:
            token_payload: Decoded JWT payload
            request_info: Request metadata (IP, user agent, etc.)

        Returns:
            DonorContext for the booking core
        """
        return DonorContext(
            donor_id=token_payload["sub"],
            org_id=token_payload["org_id"],
            email=token_payload.get("email"),
            name=token_payload.get("name"),
            permissions=token_payload.get("permissions", []),
            token_payload=token_payload,
            ip_address=request_info.get("ip_address"),
            user_agent=request_info.get("user_agent"),
            session_id=request_info.get("session_id")
        )

    def get_request_info(self) -> Dict[str, Any]:
        """
        Extract request metadata for donor context.

        Returns:
            Dictionary with request information
        """
        return {
            "ip_address": request.remote_addr,
            "user_agent": request.headers.get('User-Agent', ''),
            "session_id": request.headers.get('X-Session-ID'),
            "request_id": request.headers.get('X-Request-ID')
        }

    def authenticate(self) -> DonorContext:
        """
        Authenticate the current request.

        Raises:
            AuthenticationException: Missing or invalid token
        """
        with tracer.start_as_current_span("auth.middleware.validate_request") as span:
            span.set_attribute("auth.operation", "validate_request")

            token = self.extract_token_from_request()
            if not token:
                span.set_attribute("auth.result", "missing_token")
                logger.warning("Authentication failed: missing token")
                raise AuthenticationException("Missing authorization token")

            try:
                token_payload = self.auth_service.validate_token(token, "access")
            except TokenValidationError as e:
                span.set_attribute("auth.result", "invalid_token")
                logger.warning(f"Authentication failed: {str(e)}")
                raise AuthenticationException(str(e))

            donor_context = self.build_donor_context(token_payload, self.get_request_info())

            span.set_attributes({
                "auth.result": "success",
                "user.id": donor_context.donor_id,
                "organization.id": donor_context.org_id
            })
            logger.debug(
                "Authentication successful",
                extra={
                    "donor_id": donor_context.donor_id,
                    "organization_id": donor_context.org_id,
                    "ip_address": donor_context.ip_address
                }
            )
            return donor_context


def require_donor(f: Callable) -> Callable:
    """
    Decorator requiring a valid donor token.

    The donor context is stored on ``g.donor_context``; the wrapped view
    receives its own arguments unchanged.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.donor_context = current_app.auth_middleware.authenticate()
        return f(*args, **kwargs)
    return decorated_function


def require_permission(permission: str) -> Callable:
    """
    Decorator requiring a valid token that grants a specific permission.

    Args:
        permission: Required permission string
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            donor_context = current_app.auth_middleware.authenticate()
            g.donor_context = donor_context

            with tracer.start_as_current_span("auth.middleware.check_permission") as span:
                span.set_attributes({
                    "auth.operation": "check_permission",
                    "auth.required_permission": permission,
                    "user.id": donor_context.donor_id,
                    "organization.id": donor_context.org_id
                })

                if not donor_context.has_permission(permission):
                    span.set_attribute("auth.permission_result", "denied")
                    logger.warning(
                        f"Authorization failed: missing permission '{permission}'",
                        extra={
                            "user_id": donor_context.donor_id,
                            "organization_id": donor_context.org_id,
                            "required_permission": permission
                        }
                    )
                    raise AuthorizationException(f"Missing required permission: {permission}")

                span.set_attribute("auth.permission_result", "granted")

            return f(*args, **kwargs)
        return decorated_function
    return decorator
