from uuid import UUID

from fastapi import Header, HTTPException

# Hardcoded single user ID for local-first app
SINGLE_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> UUID:
    """Resolve the caller: ``X-User-ID`` header, else the single local user.

    Authentication lives in front of this service; the header is trusted.
    """
    if not x_user_id:
        return SINGLE_USER_ID
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid X-User-ID header: {x_user_id!r}")
