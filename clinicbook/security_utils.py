"""
Security helpers shared across the booking engine
"""

import hashlib
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# RATE LIMITING HELPERS
# ============================================================================


def generate_rate_limit_key(identifier: str, endpoint: str) -> str:
    """
    Generate a consistent rate limit key

    Args:
        identifier: IP address or other source identifier
        endpoint: API endpoint or action name

    Returns:
        Rate limit key
    """
    # Hash the identifier for privacy
    hashed_id = hashlib.sha256(identifier.encode()).hexdigest()[:16]
    return f"rate_limit:{endpoint}:{hashed_id}"


# ============================================================================
# AUDIT LOGGING
# ============================================================================


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
):
    """
    Log security-related events for audit trail

    Args:
        event_type: Type of security event (rate_limit_degraded, crypto_failure, ...)
        user_id: Staff or patient identifier, never an email or name
        ip_address: Client IP address
        details: Additional event details (no plaintext PII)
    """
    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "user_id": user_id,
        "ip_address": mask_sensitive_data(ip_address) if ip_address else None,
        "details": details or {},
    }

    logger.info(f"SECURITY_EVENT: {log_entry}")


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks

    Returns:
        True if strings are equal, False otherwise (including when either is empty)
    """
    if not a or not b:
        return False
    return secrets.compare_digest(a.encode(), b.encode())


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """
    Mask sensitive data for logging/display

    Args:
        data: Sensitive data to mask
        visible_chars: Number of characters to show at the end

    Returns:
        Masked string
    """
    if len(data) <= visible_chars:
        return "*" * len(data)

    return "*" * (len(data) - visible_chars) + data[-visible_chars:]
