import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader

from . import config
from .security_utils import constant_time_compare, log_security_event

logger = logging.getLogger(__name__)

staff_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_staff_key(
    request: Request,
    api_key: Optional[str] = Depends(staff_key_header),
) -> None:
    """
    Guard for staff-only endpoints (block time, cancellation, decrypted details).

    Compares the X-API-Key header with STAFF_API_KEY in constant time.
    """
    if not config.STAFF_API_KEY:
        logger.error("❌ STAFF_API_KEY not configured - staff endpoints are disabled")
        raise HTTPException(status_code=503, detail="Staff access not configured")

    if not constant_time_compare(api_key, config.STAFF_API_KEY):
        client_ip = request.client.host if request.client else None
        logger.warning(f"🔒 Rejected staff request to {request.url.path}")
        log_security_event(
            "staff_auth_failed",
            ip_address=client_ip,
            details={"path": request.url.path, "key_present": bool(api_key)},
        )
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
