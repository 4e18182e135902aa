import hmac
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from accrual_engine.core import Settings

logger = logging.getLogger(__name__)

admin_token_header = APIKeyHeader(name="X-Admin-Token", auto_error=False)


# Shared-secret guard for the job admin endpoints; user authentication lives in the main platform
async def require_admin_token(token: str = Depends(admin_token_header)) -> None:
    expected = Settings.ADMIN_API_TOKEN
    if not expected:
        logger.warning("ADMIN_API_TOKEN is not configured; rejecting job admin request")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job admin API is not configured")
    if not token or not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
