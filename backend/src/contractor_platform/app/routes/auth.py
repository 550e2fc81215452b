"""Tenant resolution: the caller's company comes from the bearer token."""

from fastapi import HTTPException, Request, status

from contractor_platform.services.auth_service import decode_token


async def get_company_id_dep(request: Request) -> str:
    """Dependency: extract ``company_id`` from the Bearer token."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid token",
        )
    token = auth_header.removeprefix("Bearer ")
    payload = decode_token(token)
    if not payload or not payload.get("company_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload["company_id"]
