from typing import Optional
from fastapi import Header


async def get_actor_id(userid: Optional[str] = Header(default=None)) -> Optional[str]:
    """
    Acting user's id as forwarded by the auth gateway.
    Accepted as-is; token verification happens before requests reach this service.
    """
    if userid is not None:
        userid = userid.strip() or None
    return userid
