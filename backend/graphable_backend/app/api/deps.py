"""Shared API dependencies for request-scoped values."""

from typing import Optional

from fastapi import Header, HTTPException, status


def get_workspace_id(
    workspace_id: str = Header(..., alias="X-Workspace-ID", min_length=1, max_length=128),
) -> str:
    """Provide required workspace ID from headers."""
    return workspace_id


def get_access_token(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> str:
    """Provide the bearer token forwarded to graph storage."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "AuthenticationRequired", "message": "Authentication required"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token.strip()
