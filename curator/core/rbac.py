from fastapi import Depends, HTTPException, status

from curator.core.capabilities import has_capability
from curator.schemas.principal import Principal
from curator.services.auth_service import get_current_user


def require_capability(capability: str):
    async def dependency(principal: Principal = Depends(get_current_user)) -> Principal:
        if has_capability(principal, capability):
            return principal

        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Capability {capability} required",
        )

    return dependency
