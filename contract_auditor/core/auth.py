"""
Caller identity for protected endpoints.

Sessions are handled upstream; the gateway authenticates with the service API key
(X-API-Key) and forwards the signed-in user's email in X-User-Email.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from contract_auditor.core.config import settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
user_email_header = APIKeyHeader(name="X-User-Email", auto_error=False)


class AuthenticatedUser:
    """Simple object representing the signed-in user behind a request."""
    def __init__(self, email: str):
        self.email = email

    @property
    def in_allowed_domain(self) -> bool:
        """True when no domain restriction is configured or the email matches it."""
        domain = settings.ALLOWED_EMAIL_DOMAIN
        if not domain or domain.strip() == "":
            return True
        return self.email.lower().endswith(domain.strip().lower())


def verify_service_key(api_key: Optional[str] = Security(api_key_header)) -> None:
    """
    Verify the service API key when one is configured.

    If settings.API_KEY is not set, the check is disabled (for testing/dev).
    """
    if not settings.API_KEY or settings.API_KEY.strip() == "":
        return

    if not api_key:
        logger.warning("API key missing from request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if api_key != settings.API_KEY:
        logger.warning(f"Invalid API key attempted: {api_key[:4]}...")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )


def get_current_user(
    email: Optional[str] = Security(user_email_header),
    _service: None = Depends(verify_service_key),
) -> AuthenticatedUser:
    """
    Dependency returning the signed-in user.

    Raises:
        HTTPException: 401 if no user identity was forwarded
    """
    if not email or email.strip() == "":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return AuthenticatedUser(email=email.strip())


def require_allowed_domain(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """Dependency restricting audits to the configured email domain."""
    if not user.in_allowed_domain:
        logger.warning(f"Audit attempt from unauthorized domain: {user.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: Invalid email domain",
        )
    return user


def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """
    Dependency for log and analytics views.

    Every user of the allowed email domain counts as an administrator.
    """
    if not user.in_allowed_domain:
        logger.warning(f"Access denied: {user.email} is not an administrator")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
