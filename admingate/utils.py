"""
Security utilities for the admin authorization gate.

This module provides IP matching, actor key derivation, client IP extraction
and masking of sensitive values before they reach logs or audit entries.
"""

import hmac
import ipaddress
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from starlette.requests import Request


ACTOR_KEY_STRATEGIES = ("user", "ip", "user_ip")


def ip_matches(ip: str, patterns: list[str] | tuple[str, ...]) -> bool:
    """
    Check whether ``ip`` matches any entry of ``patterns``.

    Entries are single addresses or networks in CIDR notation. Malformed
    entries never match, and a malformed ``ip`` matches nothing.

    Args:
        ip: Address to check
        patterns: Addresses and networks to match against

    Returns:
        True if the address is covered by at least one entry
    """
    if not ip:
        return False
    try:
        ip_obj = ipaddress.ip_address(ip)
    except (ipaddress.AddressValueError, ValueError):
        return False

    for pattern in patterns:
        try:
            if "/" in pattern:
                if ip_obj in ipaddress.ip_network(pattern, strict=False):
                    return True
            elif ip_obj == ipaddress.ip_address(pattern):
                return True
        except (ipaddress.AddressValueError, ValueError):
            continue
    return False


def actor_key_for(identity_id: str | None, ip: str, strategy: str = "user") -> str:
    """
    Derive the rate limit actor key for a request.

    Unauthenticated traffic is always keyed by IP address.

    Args:
        identity_id: Authenticated identity, None when unauthenticated
        ip: Source IP address
        strategy: One of "user", "ip" or "user_ip"

    Returns:
        Actor key such as "user:42", "ip:10.0.0.1" or "user:42|ip:10.0.0.1"
    """
    if strategy not in ACTOR_KEY_STRATEGIES:
        raise ValueError(f"Unknown actor key strategy: {strategy}")

    if identity_id is None or strategy == "ip":
        return f"ip:{ip}"
    if strategy == "user_ip":
        return f"user:{identity_id}|ip:{ip}"
    return f"user:{identity_id}"


def get_client_ip(request: "Request", trusted_proxies: list[str] | None = None) -> str:
    """
    Extract the client IP address with X-Forwarded-For support.

    Forwarding headers are honoured only when the direct peer is a trusted
    proxy; the first hop that is not itself a trusted proxy is the client.

    Args:
        request: The incoming Starlette request
        trusted_proxies: Trusted proxy IPs/networks (CIDR notation supported)

    Returns:
        Client IP address as string
    """
    direct_ip = getattr(request.client, "host", "") if request.client else ""

    if not trusted_proxies or not ip_matches(direct_ip, trusted_proxies):
        return direct_ip

    forwarded_for = request.headers.get("x-forwarded-for", "")
    for ip in (hop.strip() for hop in forwarded_for.split(",")):
        if not ip or ip_matches(ip, trusted_proxies):
            continue
        try:
            ipaddress.ip_address(ip)
            return ip
        except (ipaddress.AddressValueError, ValueError):
            continue

    real_ip = request.headers.get("x-real-ip", "")
    if real_ip:
        try:
            ipaddress.ip_address(real_ip)
            return real_ip
        except (ipaddress.AddressValueError, ValueError):
            pass

    return direct_ip


def secure_compare(a: str, b: str) -> bool:
    """Constant time string comparison."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


SENSITIVE_KEYS = {
    "password",
    "token",
    "secret",
    "credential",
    "authorization",
    "passwd",
    "pwd",
    "api_key",
    "private_key",
    "signing_key",
    "cookie",
}


def mask_sensitive_data(data: dict[str, Any]) -> dict[str, Any]:
    """
    Mask sensitive values in a dictionary before logging or auditing.

    Keys are matched case-insensitively by substring. Nested dictionaries are
    masked recursively; structure is preserved.

    Args:
        data: Dictionary potentially containing sensitive data

    Returns:
        New dictionary with sensitive values masked
    """
    masked = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        is_sensitive = any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)

        if isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        elif is_sensitive:
            if isinstance(value, str) and len(value) > 4:
                masked[key] = f"{value[:2]}***{value[-2:]}"
            else:
                masked[key] = "***"
        else:
            masked[key] = value

    return masked


WINDOW_SECONDS = {
    "sec": 1,
    "second": 1,
    "min": 60,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}


def parse_limit_string(limit_str: str) -> tuple[int, int]:
    """
    Parse a rate limit string like "10/min" or "100/hour".

    Args:
        limit_str: Limit string to parse

    Returns:
        Tuple of (request limit, window length in seconds)

    Raises:
        ValueError: If the string is malformed or the limit is not positive
    """
    try:
        count_str, window_str = limit_str.split("/", 1)
        count = int(count_str)
    except (ValueError, AttributeError) as e:
        raise ValueError(f"Invalid rate limit format '{limit_str}'") from e

    window_seconds = WINDOW_SECONDS.get(window_str.strip().lower())
    if window_seconds is None:
        raise ValueError(f"Invalid time window: {window_str}")

    if count <= 0:
        raise ValueError("Rate limit count must be positive")

    return count, window_seconds
