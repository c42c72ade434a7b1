from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from storefront.core.security_current import RequestIdentity, get_request_identity
from storefront.models.user import USER_ROLES


def require_roles(*allowed_roles: str) -> Callable[[RequestIdentity], RequestIdentity]:
    normalized_allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")
    unknown = normalized_allowed - USER_ROLES
    if unknown:
        raise ValueError(f"Unknown roles: {sorted(unknown)}")

    def dependency(identity: RequestIdentity = Depends(get_request_identity)) -> RequestIdentity:
        if not identity.is_authenticated:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        if not any(identity.has_role(role) for role in normalized_allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this action",
            )
        return identity

    return dependency
