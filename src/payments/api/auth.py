"""Caller identity for the Payments API.

Authentication happens upstream; the gateway in front of this service
forwards the authenticated user's id in ``X-User-Id``.
"""

from fastapi import Header, HTTPException


async def authenticated_user(x_user_id: str = Header(default="")) -> str:
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()
