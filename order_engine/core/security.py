"""
HTTP Basic authentication for the order and scan endpoints.

The username validated here is the actor recorded on orders, stock movements
and audit rows.
"""

import logging
import secrets
from typing import Tuple

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from order_engine.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

security = HTTPBasic()

DEVELOPMENT_PASSWORD = "changeme"


def expected_credentials(settings: Settings) -> Tuple[str, str]:
    """Configured username/password; a production deployment must set the password."""
    if settings.BASIC_AUTH_PASSWORD:
        return settings.BASIC_AUTH_USERNAME, settings.BASIC_AUTH_PASSWORD
    if settings.ENVIRONMENT == "production":
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Basic auth password not configured",
        )
    return settings.BASIC_AUTH_USERNAME, DEVELOPMENT_PASSWORD


def _matches(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf8"), expected.encode("utf8"))


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    username, password = expected_credentials(get_settings())

    # Both comparisons always run, in constant time
    username_ok = _matches(credentials.username, username)
    password_ok = _matches(credentials.password, password)
    if not (username_ok and password_ok):
        logger.warning(f"Rejected credentials for user {credentials.username!r}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


def require_auth():
    """Router-level dependency: ``include_router(router, dependencies=[require_auth()])``"""
    return Depends(get_current_username)
