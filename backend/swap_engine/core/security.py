"""
Requester identity.

Authentication happens upstream (API gateway); it forwards the verified user id
in the X-User-ID header. Requests without it are rejected with 401.
"""

from typing import Optional

from fastapi import Header, HTTPException, status


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-ID header",
        )
    if user_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-ID header",
        )
    return user_id


async def get_optional_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[int]:
    if x_user_id is None:
        return None
    return await get_current_user_id(x_user_id)
