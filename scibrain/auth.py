"""Auth dependency: extract bearer token from the Authorization header, resolve user."""

from typing import Optional

from fastapi import Depends, Header, HTTPException

from scibrain.dependencies import get_storage
from scibrain.storage import Storage


async def get_current_user_id_optional(
    authorization: Optional[str] = Header(None),
    storage: Storage = Depends(get_storage),
) -> Optional[int]:
    """Return current user id or None if not authenticated."""
    return await storage.get_user_id_from_authorization(authorization)


async def get_current_user_id(
    user_id: Optional[int] = Depends(get_current_user_id_optional),
) -> int:
    """Require authenticated user. Raises 401 if not logged in."""
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id
