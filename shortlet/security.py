from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from jose import jwt, JWTError

from .config import settings

MANAGER_ROLES = frozenset({"admin", "manager"})
PAYMENT_ROLES = frozenset({"admin", "manager", "payments"})

api_key_header = APIKeyHeader(name="Authorization")


async def get_key_by_user_id_or_ip(request: Request) -> str:
    """
    Tries to get the user ID from the JWT token.
    If it fails (no token, invalid token), it falls back to the client's IP.
    """
    try:
        token = request.headers.get("Authorization")
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            return request.client.host  # Fallback to IP

        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")

        if user_id:
            return str(user_id)
    except (JWTError, ValueError, AttributeError, TypeError):
        # If token is invalid, missing, or malformed, limit by IP
        pass
    return request.client.host


async def get_current_claims(token: Annotated[str, Depends(api_key_header)]) -> dict:
    """
    Decodes the JWT from the 'Authorization: Bearer ...' header.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            raise credentials_exception
        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except (JWTError, ValueError, AttributeError):
        raise credentials_exception
    if payload.get("sub") is None:
        raise credentials_exception
    return payload


def require_role(allowed: frozenset[str]):
    """
    Capability check at the request boundary: the token's `role` claim must
    be one of `allowed`.
    """
    async def checker(claims: Annotated[dict, Depends(get_current_claims)]) -> dict:
        if claims.get("role") not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this action.",
            )
        return claims

    return checker


require_manager = require_role(MANAGER_ROLES)
require_payment_verifier = require_role(PAYMENT_ROLES)
