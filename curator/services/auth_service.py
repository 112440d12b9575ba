"""Auth0 authentication service for verifying JWT tokens and loading principals."""
from typing import Optional, Dict, Any
import httpx
from jose import jwt, JWTError
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from curator.core.config import settings
from curator.schemas.principal import Principal
from curator.services.database import db_service

security = HTTPBearer()


class Auth0Service:
    """Service for Auth0 authentication."""

    def __init__(self):
        self.domain = settings.AUTH0_DOMAIN
        self.api_audience = settings.AUTH0_API_AUDIENCE
        self.algorithms = ["RS256"]
        self._jwks: Optional[Dict] = None

    async def get_jwks(self) -> Dict:
        """Fetch JWKS from Auth0."""
        if self._jwks is None:
            jwks_url = f"https://{self.domain}/.well-known/jwks.json"
            async with httpx.AsyncClient() as client:
                response = await client.get(jwks_url)
                self._jwks = response.json()
        return self._jwks

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify an Auth0 JWT token and return the payload."""
        try:
            jwks = await self.get_jwks()
            unverified_header = jwt.get_unverified_header(token)

            rsa_key = {}
            for key in jwks.get("keys", []):
                if key["kid"] == unverified_header.get("kid"):
                    rsa_key = {
                        "kty": key["kty"],
                        "kid": key["kid"],
                        "use": key["use"],
                        "n": key["n"],
                        "e": key["e"]
                    }
                    break

            if not rsa_key:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Unable to find appropriate key"
                )

            return jwt.decode(
                token,
                rsa_key,
                algorithms=self.algorithms,
                audience=self.api_audience,
                issuer=f"https://{self.domain}/"
            )

        except JWTError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Token validation failed: {str(e)}"
            )

    async def get_principal(self, auth0_payload: Dict[str, Any]) -> Optional[Principal]:
        """Load the user matching the token subject, with its capabilities."""
        auth0_id = auth0_payload.get("sub")
        if not auth0_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing subject in token"
            )

        user = await db_service.get_user_by_auth0_id(auth0_id)
        if not user:
            return None

        return Principal(
            id=user["id"],
            internal_id=user.get("internal_id") or user["id"],
            name=user.get("name") or user.get("email") or "",
            email=user.get("email"),
            capabilities=user.get("capabilities") or [],
        )


auth_service = Auth0Service()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Principal:
    """Dependency to get the current authenticated principal."""
    token = credentials.credentials
    auth0_payload = await auth_service.verify_token(token)
    principal = await auth_service.get_principal(auth0_payload)

    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unknown user"
        )

    return principal
