"""Contains utility functions for network stuff"""

from netaddr import valid_ipv4, valid_ipv6


def is_port(port):
    """Checks if a port is valid"""

    return isinstance(port, int) and not isinstance(port, bool) and 0 <= port <= 65535


def is_ip(ip):
    """Checks if an IP is a valid IPv4 or IPv6 address"""

    if not isinstance(ip, str):
        return False

    return valid_ipv4(ip) or valid_ipv6(ip)


def healthz_url(ip, port, path="/healthz"):
    """Build an https URL for a pod's health endpoint.

    Raises:
        ValueError if ip or port are invalid.
    """

    if not is_ip(ip):
        raise ValueError(f"invalid IP address: {ip}")

    if not is_port(port):
        raise ValueError(f"invalid port: {port}")

    host = f"[{ip}]" if valid_ipv6(ip) else ip
    return f"https://{host}:{port}{path}"
