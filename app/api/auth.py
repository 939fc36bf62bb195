from fastapi import Header, HTTPException, Security
from fastapi.security import APIKeyHeader
from app import config

api_key_header = APIKeyHeader(name="X-API-Key")


async def verify_api_key(api_key: str = Security(api_key_header)):
    if api_key != config.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key


async def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """The upstream auth proxy forwards the authenticated user in X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id
