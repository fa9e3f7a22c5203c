from __future__ import annotations

from typing import Any

import httpx
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from docpipe.core.config import settings
from docpipe.core.errors import Unauthorized

# auto_error=False so a missing header surfaces as our 401, not FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)

_jwks_cache: dict[str, Any] | None = None


async def _get_jwks() -> dict[str, Any]:
    global _jwks_cache
    if _jwks_cache is not None:
        return _jwks_cache

    jwks_url = f"{settings.auth0_issuer_url}.well-known/jwks.json"
    async with httpx.AsyncClient() as client:
        response = await client.get(jwks_url)
        response.raise_for_status()
        _jwks_cache = response.json()
        return _jwks_cache


def _find_rsa_key(jwks: dict[str, Any], token: str) -> dict[str, str] | None:
    unverified_header = jwt.get_unverified_header(token)
    for key in jwks.get("keys", []):
        if key["kid"] == unverified_header.get("kid"):
            return {
                "kty": key["kty"],
                "kid": key["kid"],
                "use": key["use"],
                "n": key["n"],
                "e": key["e"],
            }
    return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise Unauthorized()

    token = credentials.credentials

    try:
        jwks = await _get_jwks()
        rsa_key = _find_rsa_key(jwks, token)
    except (JWTError, httpx.HTTPError) as e:
        raise Unauthorized(f"Invalid token: {e}") from e

    if rsa_key is None:
        raise Unauthorized("Unable to find appropriate key")

    try:
        return jwt.decode(
            token,
            rsa_key,
            algorithms=["RS256"],
            audience=settings.auth0_audience,
            issuer=settings.auth0_issuer_url,
        )
    except JWTError as e:
        raise Unauthorized(f"Invalid token: {e}") from e


async def get_caller_id(user: dict[str, Any] = Depends(get_current_user)) -> str:
    """Stable caller identity used for rate limiting and audit."""
    caller_id = user.get("sub")
    if not caller_id:
        raise Unauthorized("Token has no subject")
    return str(caller_id)
