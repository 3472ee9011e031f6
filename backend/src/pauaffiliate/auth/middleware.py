"""Authentication dependencies for FastAPI."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pauaffiliate.auth.models import UserAccount, UserRole
from pauaffiliate.auth.profiles import profile_store
from pauaffiliate.auth.tokens import TokenError, decode_token
from pauaffiliate.logging_config import get_logger

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> UserAccount | None:
    """Get current authenticated user.

    Args:
        request: FastAPI request
        credentials: Bearer token

    Returns:
        User account or None if not authenticated
    """
    if not credentials:
        return None

    try:
        payload = decode_token(credentials.credentials, token_type="access")
    except TokenError as e:
        logger.info("bearer_token_rejected", error=str(e))
        return None

    user = profile_store.get_user(payload.get("sub", ""))
    if user and user.is_active:
        # Store user in request state for later use
        request.state.user = user
        return user

    return None


def require_auth(user: UserAccount | None = Depends(get_current_user)) -> UserAccount:
    """Require authentication - raises 401 if not authenticated.

    Raises:
        HTTPException: 401 if not authenticated
    """
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_admin(user: UserAccount = Depends(require_auth)) -> UserAccount:
    """Require admin privileges.

    Raises:
        HTTPException: 403 if not admin
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


class RoleChecker:
    """Dependency restricting an endpoint to some roles."""

    def __init__(self, allowed_roles: list[UserRole]):
        self.allowed_roles = allowed_roles

    def __call__(self, user: UserAccount = Depends(require_auth)) -> UserAccount:
        if user.role not in self.allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This endpoint is not available for '{user.role.value}' accounts",
            )
        return user


# Pre-configured checkers
require_affiliate = RoleChecker([UserRole.AFFILIATE])
require_wallet_owner = RoleChecker([UserRole.AFFILIATE, UserRole.BUSINESS])
