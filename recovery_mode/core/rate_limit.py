"""
Client identification for request rate limiting.

X-Forwarded-For is only honoured when the direct peer is one of the
configured trusted proxies, so clients cannot spoof their way past the
limits on the recovery endpoints.
"""
import ipaddress
from functools import lru_cache

from fastapi import Request
from slowapi import Limiter

from recovery_mode.core.config import get_config


@lru_cache(maxsize=1)
def get_trusted_proxies() -> frozenset[str]:
    """Trusted proxy addresses from the configuration, CIDR ranges expanded."""
    trusted = set()
    for proxy in get_config().trusted_proxies:
        if "/" not in proxy:
            trusted.add(proxy)
            continue
        try:
            network = ipaddress.ip_network(proxy, strict=False)
        except ValueError:
            continue
        trusted.update(str(ip) for ip in network.hosts())
    return frozenset(trusted)


def get_real_client_ip(request: Request) -> str:
    """
    Get the client IP address to rate limit on.

    Behind a trusted proxy this is the rightmost X-Forwarded-For entry that
    is not itself a trusted proxy.
    """
    direct_client_ip = request.client.host if request.client else "unknown"
    trusted_proxies = get_trusted_proxies()

    if direct_client_ip not in trusted_proxies:
        return direct_client_ip

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if not x_forwarded_for:
        return direct_client_ip

    ips = [ip.strip() for ip in x_forwarded_for.split(",")]
    for ip in reversed(ips):
        if ip and ip not in trusted_proxies:
            return ip

    return ips[0] or direct_client_ip


limiter = Limiter(key_func=get_real_client_ip)
