"""Per-IP request limiting with slowapi.

This sits in front of the per-email lockout: it caps how fast one client can
hit the auth endpoints at all, whatever email it tries.
"""

import ipaddress
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from parishgate.core.config import get_settings

DEFAULT_RETRY_AFTER_SECONDS = 60

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


@dataclass(frozen=True)
class TrustedProxies:
    """Reverse proxies whose forwarding headers we believe."""

    addresses: frozenset[str] = frozenset()
    networks: tuple[IPNetwork, ...] = ()

    @classmethod
    def parse(cls, raw: str) -> "TrustedProxies":
        """Parse a comma-separated list of IPs and CIDR ranges."""
        entries = [entry.strip() for entry in raw.split(",") if entry.strip()]
        return cls(
            addresses=frozenset(entry for entry in entries if "/" not in entry),
            networks=tuple(ipaddress.ip_network(entry, strict=False) for entry in entries if "/" in entry),
        )

    def __contains__(self, ip: str) -> bool:
        if ip in self.addresses:
            return True
        if not self.networks:
            return False
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(addr in net for net in self.networks)


@lru_cache(maxsize=1)
def get_trusted_proxies() -> TrustedProxies:
    return TrustedProxies.parse(get_settings().trusted_proxies)


def get_client_ip(request: Request) -> str:
    """Client IP, honouring X-Real-IP / X-Forwarded-For only behind a trusted proxy."""
    peer = get_remote_address(request)
    if peer not in get_trusted_proxies():
        return peer

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Left-most entry is the original client
        return forwarded_for.split(",")[0].strip()

    return peer


limiter = Limiter(key_func=get_client_ip, enabled=get_settings().is_rate_limit_enabled)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Answer with the same error shape the login endpoint uses."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": {
                "code": "too_many_requests",
                "message": "Too many requests. Please try again later.",
            },
            "retry_after": DEFAULT_RETRY_AFTER_SECONDS,
        },
        headers={"Retry-After": str(DEFAULT_RETRY_AFTER_SECONDS)},
    )
